"""
Error types raised by the sync pipeline.

Only CredentialMissing and PersistenceFailure abort a run. Classifier
problems never surface here: a failed classification just leaves the
message unclassified until the next sync.
"""


class SyncError(Exception):
    """Base class for failures of a sync run."""


class CredentialMissing(SyncError):
    """No stored credential for the owner. The user has to connect the mailbox."""

    code = "NO_GMAIL_TOKENS"

    def __init__(self, owner: str):
        super().__init__(f"Gmail access not configured for {owner}")
        self.owner = owner


class PersistenceFailure(SyncError):
    """A write to the document store failed; the run is aborted."""


class SyncDeadlineExceeded(SyncError):
    """The run ran past its deadline. Work already stored is kept."""


class SyncInProgress(SyncError):
    """Another sync for the same owner is still running."""

    def __init__(self, owner: str):
        super().__init__(f"A sync is already running for {owner}")
        self.owner = owner


class DocumentNotFound(LookupError):
    """Raised by store lookups when no document exists for the key."""


class ClassifierHTTPError(Exception):
    """Non-2xx answer from the chat-completion endpoint."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
