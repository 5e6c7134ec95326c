"""Error hierarchy for classroom synchronization failure classification.

The hierarchy mirrors how a failure is handled, not where it came from:

- FatalSyncError ends the sync immediately. The controller reports it through
  the status sink and always clears the crawl progress record.
- ExtractionError and NavigationError are recoverable per course. They are
  recorded in the per-course result list and the crawl moves on.
- BackendError on a snapshot lookup only degrades an incremental sync to a
  quick one.

Nothing in the engine retries automatically; re-running a sync is a caller
decision.
"""


class SyncError(Exception):
    """Base exception for all synchronization errors."""

    pass


class FatalSyncError(SyncError):
    """Failure that terminates the current sync attempt."""

    pass


class NoCoursesFoundError(FatalSyncError):
    """The home page yielded no courses to synchronize."""

    def __init__(self, message: str = "No courses found. Make sure you are enrolled in classes.") -> None:
        super().__init__(message)


class TransmissionError(FatalSyncError):
    """Sending the final payload to the backend failed.

    Covers timeouts, connection errors and non-2xx responses alike.
    """

    pass


class SyncAbortedError(FatalSyncError):
    """Abort was requested; accumulated progress has been discarded."""

    def __init__(self, message: str = "Sync was cancelled") -> None:
        super().__init__(message)


class CrawlInterruptedError(FatalSyncError):
    """The durable crawl progress disappeared while a deep sync was driving it."""

    pass


class ExtractionError(SyncError):
    """Extracting records from one page failed. Recoverable per course."""

    pass


class NavigationError(ExtractionError):
    """The page for a course could not be opened in time."""

    pass


class BackendError(SyncError):
    """A read from the sync backend failed (snapshot or last-sync lookup)."""

    pass


class PayloadError(SyncError):
    """The backend rejected a payload as malformed."""

    pass


class AuthenticationError(FatalSyncError):
    """The browser session is not signed in to Classroom.

    Requires a fresh interactive sign-in (``classroom-sync login``).
    """

    pass
