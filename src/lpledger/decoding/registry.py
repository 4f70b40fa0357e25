"""Build event registries from Solidity event signatures.

`make_registry` accepts one or many signatures such as
``"Collect(uint256 indexed tokenId, address recipient, uint256 amount0, uint256 amount1)"``
and derives topic0 (keccak of the canonical signature) plus the topic/data
field layout.
"""

from __future__ import annotations

from eth_utils import keccak

from .specs import DataFieldSpec, EventRegistry, EventSpec, TopicFieldSpec

NFPM_SIGNATURES = (
    "IncreaseLiquidity(uint256 indexed tokenId, uint128 liquidity, uint256 amount0, uint256 amount1)",
    "DecreaseLiquidity(uint256 indexed tokenId, uint128 liquidity, uint256 amount0, uint256 amount1)",
    "Collect(uint256 indexed tokenId, address recipient, uint256 amount0, uint256 amount1)",
)


def _split_params(params: str) -> list[str]:
    """Split a parameter list on top-level commas (tuple types stay intact)."""
    items: list[str] = []
    depth = 0
    buf: list[str] = []
    for ch in params:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            items.append("".join(buf).strip())
            buf = []
            continue
        buf.append(ch)
    if buf:
        items.append("".join(buf).strip())
    return [i for i in items if i]


def _parse_param(fragment: str, fallback_name: str) -> tuple[str, str, bool]:
    """Parse ``"uint256 indexed tokenId"`` into ``(name, abi_type, indexed)``."""
    tokens = fragment.split()
    indexed = "indexed" in tokens
    tokens = [t for t in tokens if t != "indexed"]
    if not tokens:
        raise ValueError(f"Empty event parameter: {fragment!r}")
    if len(tokens) == 1:
        return (fallback_name, tokens[0], indexed)
    return (tokens[-1], " ".join(tokens[:-1]), indexed)


def event_spec_from_signature(signature: str) -> EventSpec:
    sig = signature.strip()
    open_paren = sig.find("(")
    close_paren = sig.rfind(")")
    if open_paren <= 0 or close_paren < open_paren:
        raise ValueError(f"Invalid event signature: {signature}")
    name = sig[:open_paren].strip()

    parsed = [
        _parse_param(part, f"arg{i}")
        for i, part in enumerate(_split_params(sig[open_paren + 1 : close_paren]))
    ]
    canonical = f"{name}({','.join(t for _, t, _ in parsed)})"
    topic0 = "0x" + keccak(text=canonical).hex()

    indexed = [(n, t) for n, t, is_indexed in parsed if is_indexed]
    data = [(n, t) for n, t, is_indexed in parsed if not is_indexed]
    return EventSpec(
        topic0=topic0,
        name=name,
        signature=canonical,
        topic_fields=tuple(TopicFieldSpec(n, i + 1, t) for i, (n, t) in enumerate(indexed)),
        data_fields=tuple(DataFieldSpec(n, i, t) for i, (n, t) in enumerate(data)),
    )


def make_registry(signatures: str | list[str] | tuple[str, ...]) -> EventRegistry:
    """Create a registry from one or multiple event signatures."""
    sig_list = [signatures] if isinstance(signatures, str) else list(signatures)
    reg: EventRegistry = {}
    for signature in sig_list:
        spec = event_spec_from_signature(signature)
        reg[spec.topic0.lower()] = spec
    return reg


def make_nfpm_registry() -> EventRegistry:
    """Registry for the NonfungiblePositionManager liquidity and collect events."""
    return make_registry(NFPM_SIGNATURES)
