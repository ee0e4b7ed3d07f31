"""
Error taxonomy shared by the scheduling and change-pipeline engine.

Every failure that crosses a component boundary is one of these. The HTTP layer
maps them to status codes; the scheduler turns them into logged failures.
"""


class AutopilotError(Exception):
    """Base class for all engine errors."""

    pass


class ValidationError(AutopilotError):
    """
    Raised when caller input is rejected before any state is mutated.
    This is a client error (400) - bad time, unknown timezone, empty instruction.
    """

    pass


class InvalidTimeFormatError(ValidationError):
    """Raised when a daily time is not HH:MM within 00:00-23:59."""

    pass


class InvalidTimezoneError(ValidationError):
    """Raised when a timezone name is not in the IANA database."""

    pass


class NotFoundError(AutopilotError):
    """Raised when a repository, proposal or file does not exist (404)."""

    pass


class ConflictError(AutopilotError):
    """
    Raised on a stale optimistic token or a concurrent mutation (409).
    Never retried automatically; the caller must re-fetch and retry.
    """

    pass


class AlreadyFinalizedError(ConflictError):
    """Raised when applying a proposal that is already committed or rejected."""

    pass


class RunInProgressError(ConflictError):
    """Raised when a pipeline run for the same repository is already in flight."""

    pass


class RepositoryEmptyError(AutopilotError):
    """Raised by the gateway when the remote repository has no commits yet."""

    pass


class TransportError(AutopilotError):
    """Raised on network or remote-store failures."""

    pass


class OracleContractViolation(AutopilotError):
    """
    Raised when the reasoning oracle's response cannot be parsed into the
    expected plan shape. Fails the one run or proposal, never the schedule.
    """

    pass


class OracleUnavailableError(TransportError):
    """Raised when the reasoning oracle call itself fails or times out."""

    pass


class ChangeNotMeaningfulError(AutopilotError):
    """Raised when an unattended run proposes only trivially small changes."""

    pass
