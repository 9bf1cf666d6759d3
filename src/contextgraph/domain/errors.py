"""Error taxonomy shared by the workflow, orchestrator and store adapters.

Policy rejections are not errors: they are ordinary decisions carrying a
reason code. Everything here describes input that could not be processed or a
backend that could not be reached.
"""

from __future__ import annotations


class ContextGraphError(RuntimeError):
    """Base class for all context graph failures."""

    retryable: bool = False


class MalformedProposalError(ContextGraphError, ValueError):
    """Raised when a proposal cannot be interpreted (bad key, confidence, source)."""


class MalformedKeyError(MalformedProposalError):
    """Raised when a field key is not of the form ``<domain>.<name>``."""


class ProposalStateError(ContextGraphError):
    """Raised when a review action targets a field in the wrong lifecycle state."""


class FieldStoreError(ContextGraphError):
    """Raised when the field store backend fails."""

    retryable = True


class StoreTimeoutError(FieldStoreError):
    """Raised when a field store call exceeds its timeout."""


class ConcurrentWriteError(FieldStoreError):
    """Raised when a compare-and-set write loses against another writer."""


class ProducerError(ContextGraphError):
    """Raised when a producer cannot deliver its proposals."""

    retryable = True
