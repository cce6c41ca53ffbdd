"""Error taxonomy for Homebrew invocations."""

from __future__ import annotations


class BrewError(RuntimeError):
    """Base class for every failure surfaced by a brew invocation."""

    message = "Homebrew command failed."

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(detail or self.message)


class ToolNotFound(BrewError):
    message = "Homebrew not found. Please ensure it is installed."


class LaunchFailure(BrewError):
    message = "Could not launch Homebrew."


class PermissionDenied(BrewError):
    message = (
        "Permission denied while launching Homebrew. Make sure the brew "
        "executable is readable and executable by the current user and that "
        "the application is not running inside a restrictive sandbox."
    )


class CommandFailed(BrewError):
    pass


class Timeout(BrewError):
    message = "The Homebrew command timed out."


class OutputDecodeError(BrewError):
    message = "Homebrew produced output that is not valid UTF-8."


class ParsingError(BrewError):
    message = "Failed to parse Homebrew output."


class OperationInProgress(BrewError):
    message = "Another Homebrew operation is already running."
