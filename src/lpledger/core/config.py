from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from lpledger import constants
from lpledger.core.errors import NotFoundError

FinalityType = Literal["blockTag", "blockHeight"]


@dataclass(frozen=True)
class FinalityConfig:
    """How the finality boundary of a chain is determined.

    ``blockTag`` asks the node for the ``finalized`` block; ``blockHeight``
    treats ``latest - min_block_height`` as final.
    """

    type: FinalityType = "blockTag"
    min_block_height: int = 64


@dataclass(frozen=True)
class ChainConfig:
    """Per-chain endpoints and contract addresses."""

    chain_id: int
    name: str
    rpc_url: str | None
    nfpm_address: str
    factory_address: str
    nfpm_deployment_block: int
    finality: FinalityConfig = FinalityConfig()
    quote_tokens: tuple[str, ...] = ()


@dataclass(frozen=True)
class LedgerConfig:
    """Top-level configuration for syncing and storing position ledgers."""

    chains: dict[int, ChainConfig] = field(default_factory=dict)
    db_path: Path = Path("./data/lpledger.duckdb")
    timeout_s: int = 20
    max_connections: int = 16
    sync_concurrency: int = 4

    def chain(self, chain_id: int) -> ChainConfig:
        try:
            return self.chains[chain_id]
        except KeyError:
            raise NotFoundError(f"Unsupported chain {chain_id}") from None

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> LedgerConfig:
        """Build the default config, taking RPC urls from ``RPC_URL_<CHAIN>``."""
        env = dict(os.environ if env is None else env)
        chains = {
            chain_id: ChainConfig(
                chain_id=chain_id,
                name=name,
                rpc_url=env.get(f"RPC_URL_{name.upper()}"),
                nfpm_address=constants.NFPM_ADDRESSES[chain_id],
                factory_address=constants.FACTORY_ADDRESSES[chain_id],
                nfpm_deployment_block=constants.NFPM_DEPLOYMENT_BLOCKS[chain_id],
                quote_tokens=constants.QUOTE_TOKENS.get(chain_id, ()),
            )
            for chain_id, name in constants.CHAIN_NAMES.items()
        }
        return cls(
            chains=chains,
            db_path=Path(env.get("LPLEDGER_DB_PATH", "./data/lpledger.duckdb")),
            timeout_s=int(env.get("LPLEDGER_RPC_TIMEOUT", "20")),
            sync_concurrency=int(env.get("LPLEDGER_SYNC_CONCURRENCY", "4")),
        )
