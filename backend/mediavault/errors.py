"""Error taxonomy shared by services and routes.

Services raise these; main.py maps each class to an HTTP status.
"""


class MediaVaultError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500
    public_message = "Internal error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationError(MediaVaultError):
    """Bad or missing field, disallowed type, oversized payload. Safe to show verbatim."""
    status_code = 400
    public_message = "Invalid request"


class NotFoundError(MediaVaultError):
    status_code = 404
    public_message = "Not found"


class AuthorizationError(MediaVaultError):
    """Missing or wrong admin credential. Message is always the same."""
    status_code = 401
    public_message = "Unauthorized"

    def __init__(self, message: str = ""):
        # Ignore the cause so callers can't tell a bad key from a missing one
        super().__init__(self.public_message)


class StorageError(MediaVaultError):
    """Disk or database failure. Detail is logged, not returned."""
    status_code = 500
    public_message = "Storage failure"


class ConsistencyError(MediaVaultError):
    """Bytes and ledger record disagree after a partial failure.

    Never raised to callers; logged for manual reconciliation.
    """
    public_message = "Ledger and storage root are out of sync"
