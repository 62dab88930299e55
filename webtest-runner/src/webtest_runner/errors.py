"""Exception types for webtest-runner.

All webtest exceptions inherit from WebtestError, allowing consumers to catch
every framework-specific error with a single except clause.

Exception hierarchy:
    WebtestError (base)
    +-- AlreadyRunningError: A run was requested while another is active
    +-- CommandError: A client command was malformed or unknown

Failures of the runner subprocess itself (spawn errors, crashes, non-zero
exits) are never raised; they are reported as events to the client that
requested the run.
"""


class WebtestError(Exception):
    """Base exception for all webtest errors."""


class AlreadyRunningError(WebtestError):
    """Raised when a run is started while another run is active.

    Runs are single-flight: the second request is rejected, never queued.
    """

    def __init__(self, message: str = "Tests are already running") -> None:
        super().__init__(message)


class CommandError(WebtestError):
    """Raised when a client command cannot be interpreted.

    This covers unknown event names and payloads that fail validation.
    """
