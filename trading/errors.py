"""Typed failure kinds raised by the chain client and the execution path."""

from __future__ import annotations


class ChainActionError(RuntimeError):
    """Base class for failures of a single chain read or write."""


class TransientQuoteUnavailable(ChainActionError):
    """Venue cannot quote right now; skip this tick and retry on the next."""


class SimulationRejected(ChainActionError):
    """Call would revert against current state. No transaction was sent."""


class ConfirmationTimeout(ChainActionError):
    """No receipt within the per-attempt timeout. The transaction may still land."""


class AllowanceConfirmationFailed(ChainActionError):
    """An approve step did not end in a confirmed successful receipt."""


class BalanceChanged(ChainActionError):
    """Held balance moved between decision and execution (balance race)."""


class InsufficientAllowance(ChainActionError):
    """Spender is not authorized for the amount being moved."""


class NonceAlreadyUsed(ChainActionError):
    """Node reports the nonce as consumed; an earlier attempt has been mined."""


class ChainWriteError(ChainActionError):
    """Send rejected by the node for a reason with no dedicated kind."""
