"""Error taxonomy for the bookmark sync core and its collaborators."""


class BookmarkSyncError(Exception):
    """Base class for all sync errors."""


class AuthFailureError(BookmarkSyncError):
    """Raised when the Auth Service rejects a sign-in/sign-out or session request."""


class FetchFailureError(BookmarkSyncError):
    """Raised when the initial bulk load of bookmarks fails."""


class MutationFailureError(BookmarkSyncError):
    """
    Raised when an insert or delete is rejected by the Data Store.

    This is the only failure surfaced to the user; callers keep their
    pending input so the action can be retried.
    """

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"Error {operation} bookmark"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class SubscriptionFailureError(BookmarkSyncError):
    """Raised when a Change Feed subscription cannot be established."""


class DataStoreError(BookmarkSyncError):
    """Raised by Data Store adapters when a query or write fails."""
