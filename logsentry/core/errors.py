"""Exception taxonomy for the agent.

Only FatalIdentityError is allowed to end a run early; every other error is
caught by the orchestrator, logged, and surfaced through the report or alert
channel.
"""


class LogSentryError(Exception):
    """Base class for all agent errors."""


class FatalIdentityError(LogSentryError):
    """Host identity could not be determined at all."""


class ProbeError(LogSentryError):
    """A disk or size sample could not be taken."""


class UpdateError(LogSentryError):
    """Base class for self-update failures. The message is operator-facing."""


class UpdateFetchError(UpdateError):
    """Candidate could not be downloaded, or the download was empty."""


class UpdateValidationError(UpdateError):
    """Candidate is missing its version or a required declaration."""


class UpdateSwapError(UpdateError):
    """Merged candidate could not be written over the running executable."""


class DispatchError(LogSentryError):
    """Notification transport failure."""
