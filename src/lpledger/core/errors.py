"""Error taxonomy for the ledger engine.

Three families matter to callers:

- retryable errors (``retryable = True``): the finality boundary could not be
  determined or a collaborator (RPC node, pricing source) failed. The whole
  sync may be re-invoked safely.
- consistency faults: a replay invariant broke (negative liquidity, missing
  price, disordered periodization input). These halt the sync for the
  position and are never corrected silently.
- not-found: the caller referenced a position, pool or chain that does not
  exist.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by lpledger."""

    retryable: bool = False


class RetryableLedgerError(LedgerError):
    retryable = True


class FinalityUnavailableError(RetryableLedgerError):
    """The finality boundary for a chain could not be determined."""

    def __init__(self, chain_id: int) -> None:
        super().__init__(f"Unable to determine finalized block for chain {chain_id}")
        self.chain_id = chain_id


class CollaboratorError(RetryableLedgerError):
    """A network collaborator (RPC, price source) failed transiently."""


class LedgerConsistencyError(LedgerError):
    """A replay or periodization invariant was violated."""


class AprCalculationError(ValueError):
    """Invalid arguments passed to the APR arithmetic."""


class NotFoundError(LedgerError):
    """A referenced position, pool or chain does not exist."""


class SyncInProgressError(LedgerError):
    """A sync for the same position is already running."""

    def __init__(self, position_id: str) -> None:
        super().__init__(f"Sync already in progress for position {position_id}")
        self.position_id = position_id
