"""didanchor.core.exceptions

Errors are part of the interface.

Every protocol error carries a stable ``code``. Callers branch on the class,
logs and CLI output carry the code.
"""

from __future__ import annotations


class DidAnchorError(Exception):
    """Base exception for didanchor."""

    code = "DidAnchorError"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or ""
        super().__init__(f"{self.code}: {message}" if message else self.code)


class ConfigError(DidAnchorError):
    """Configuration is missing, invalid, or inconsistent."""

    code = "ConfigError"


class KeyFileError(DidAnchorError):
    """Key file cannot be written, read, or decrypted."""

    code = "KeyFileError"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputError(DidAnchorError):
    """Malformed input. Rejected immediately, never retried."""

    code = "InvalidInput"


class InvalidInputError(InputError):
    """A required field is missing or a value is malformed."""


# ---------------------------------------------------------------------------
# Document invariants
# ---------------------------------------------------------------------------


class PatchError(DidAnchorError):
    """A patch would break a document invariant."""


class IncorrectPatchActionError(PatchError):
    """Unknown patch action, or an action not allowed in this operation."""

    code = "IncorrectPatchAction"


class KeyDuplicatedError(PatchError):
    """Key ids are unique within a document."""

    code = "KeyDuplicated"


class ServiceDuplicatedError(PatchError):
    """Service ids are unique within a document."""

    code = "ServiceDuplicated"


class NotFoundError(PatchError):
    """The key or service to remove does not exist."""

    code = "NotFound"


class InsufficientKeysError(PatchError):
    """A document must keep at least one public key."""

    code = "Insufficient"


# ---------------------------------------------------------------------------
# Commitment chain
# ---------------------------------------------------------------------------


class ChainError(DidAnchorError):
    """Stale or unauthorized operation. Fatal to that operation."""


class CommitmentMismatchError(ChainError):
    """The revealed key does not hash to the stored commitment."""

    code = "CommitmentMismatch"


class InvalidSignatureError(ChainError):
    """Signed data does not verify against the revealed key."""

    code = "InvalidSignature"


class DeltaHashMismatchError(ChainError):
    """The delta does not hash to the signed delta hash."""

    code = "DeltaHashMismatch"


class InvalidOperationOrderError(ChainError):
    """Create after Create, or anything before Create."""

    code = "InvalidOperationOrder"


class DidDeactivatedError(ChainError):
    """Deactivation is terminal. Nothing follows it."""

    code = "DidDeactivated"


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


class BatchError(DidAnchorError):
    """The batch cannot be anchored as a whole."""


class RepeatedDidError(BatchError):
    """One operation per identifier per batch."""

    code = "RepeatedDID"


class CapacityError(BatchError):
    """Caller must split the batch."""


class FileSizeExceedsLimitError(CapacityError):
    """A compressed batch file is above its ceiling."""

    code = "FileSizeExceedsLimit"


class BeyondCountLimitError(CapacityError):
    """Too many operations in one batch."""

    code = "BeyondCountLimit"


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class CasError(DidAnchorError):
    """Content-addressable storage failures."""

    code = "CasError"


class CasNotFoundError(CasError):
    """No content stored under this address."""

    code = "CasNotFound"


class OperationStoreError(DidAnchorError):
    """Operation log failures: schema, IO, integrity."""

    code = "OperationStoreError"
