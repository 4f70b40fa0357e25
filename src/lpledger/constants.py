"""Chain and contract constants for Uniswap V3 style position managers."""

from __future__ import annotations

from eth_utils import keccak

# ---- Chain ids ----
ETHEREUM = 1
OPTIMISM = 10
BSC = 56
POLYGON = 137
BASE = 8453
ARBITRUM = 42161

CHAIN_NAMES: dict[int, str] = {
    ETHEREUM: "ethereum",
    ARBITRUM: "arbitrum",
    BASE: "base",
    BSC: "bsc",
    POLYGON: "polygon",
    OPTIMISM: "optimism",
}

# ---- NonfungiblePositionManager ----
_CANONICAL_NFPM = "0xC36442b4a4522E871399CD717aBDD847Ab11FE88"

NFPM_ADDRESSES: dict[int, str] = {
    ETHEREUM: _CANONICAL_NFPM,
    ARBITRUM: _CANONICAL_NFPM,
    OPTIMISM: _CANONICAL_NFPM,
    POLYGON: _CANONICAL_NFPM,
    BASE: "0x03a520b32C04BF3bEEf7BEb72E919cf822Ed34f1",
    BSC: "0x7b8A01B39D58278b5DE7e48c8449c9f4F5170613",
}

# First block at which the NFPM can have emitted position events.
NFPM_DEPLOYMENT_BLOCKS: dict[int, int] = {
    ETHEREUM: 12_369_621,
    ARBITRUM: 165,
    BASE: 1_371_680,
    BSC: 26_324_014,
    POLYGON: 22_757_547,
    OPTIMISM: 4_294,
}

# ---- UniswapV3Factory ----
_CANONICAL_FACTORY = "0x1F98431c8aD98523631AE4a59f267346ea31F984"

FACTORY_ADDRESSES: dict[int, str] = {
    ETHEREUM: _CANONICAL_FACTORY,
    ARBITRUM: _CANONICAL_FACTORY,
    OPTIMISM: _CANONICAL_FACTORY,
    POLYGON: _CANONICAL_FACTORY,
    BASE: "0x33128a8fC17869897dcE68Ed026d694621f6FDfD",
    BSC: "0xdB1d10011AD0Ff90774D0C6Bb92e5C5c8b4461F7",
}

# ---- Quote token preference (first match wins, otherwise token1) ----
QUOTE_TOKENS: dict[int, tuple[str, ...]] = {
    ETHEREUM: (
        "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",  # USDC
        "0xdAC17F958D2ee523a2206206994597C13D831ec7",  # USDT
        "0x6B175474E89094C44Da98b954EedeAC495271d0F",  # DAI
        "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",  # WETH
    ),
    ARBITRUM: (
        "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",  # USDC
        "0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8",  # USDC.e
        "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9",  # USDT
        "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",  # WETH
    ),
    BASE: (
        "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",  # USDC
        "0x4200000000000000000000000000000000000006",  # WETH
    ),
    BSC: (
        "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d",  # USDC
        "0x55d398326f99059fF775485246999027B3197955",  # USDT
        "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",  # WBNB
    ),
    POLYGON: (
        "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",  # USDC
        "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",  # USDC.e
        "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",  # USDT
        "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",  # WETH
    ),
    OPTIMISM: (
        "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",  # USDC
        "0x7F5c764cBc14f9669B88837ca1490cCa17c31607",  # USDC.e
        "0x94b008aA00579c1307B0EF2c499aD98a8ce58e58",  # USDT
        "0x4200000000000000000000000000000000000006",  # WETH
    ),
}

# ---- Function selectors used by the RPC-backed providers ----
def selector(signature: str) -> str:
    """Return the 4-byte function selector as a 0x-prefixed hex string."""
    return "0x" + keccak(text=signature)[:4].hex()


SLOT0_SELECTOR = selector("slot0()")
POSITIONS_SELECTOR = selector("positions(uint256)")
GET_POOL_SELECTOR = selector("getPool(address,address,uint24)")
DECIMALS_SELECTOR = selector("decimals()")
SYMBOL_SELECTOR = selector("symbol()")

# ---- APR arithmetic ----
SECONDS_PER_YEAR = 31_557_600  # 365.25 days
BASIS_POINTS_MULTIPLIER = 10_000
Q192 = 2**192
