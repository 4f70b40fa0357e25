"""Network collaborators: JSON-RPC client and RPC-backed providers."""

from lpledger.clients.providers import (
    RpcFinalityProvider,
    RpcPoolMetadataProvider,
    RpcPoolPriceProvider,
    RpcPositionEventsProvider,
)
from lpledger.clients.rpc import RPC

__all__ = [
    "RPC",
    "RpcFinalityProvider",
    "RpcPoolMetadataProvider",
    "RpcPoolPriceProvider",
    "RpcPositionEventsProvider",
]
