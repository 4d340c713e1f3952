"""
Error taxonomy for stack lifecycle operations.

Every error carries the stack name and the phase it happened in so callers can
log it and decide whether to continue with the remaining stacks.
"""


class LifecycleError(Exception):
    """Base class for all coordinator failures."""

    def __init__(self, message, stack=None, phase=None):
        super().__init__(message)
        self.message = message
        self.stack = stack
        self.phase = phase

    def __str__(self):
        parts = []
        if self.stack:
            parts.append(f"stack={self.stack}")
        if self.phase:
            parts.append(f"phase={self.phase}")
        if parts:
            return f"{self.message} ({', '.join(parts)})"
        return self.message


class ProbeError(LifecycleError):
    """The liveness check (or a listing command) could not be executed."""


class StopVerificationExhausted(LifecycleError):
    """Stop was issued but polling still observed running containers."""


class StartTimeout(LifecycleError):
    """The start command did not finish within its time bound."""


class StartFailure(LifecycleError):
    """The start command failed without timing out."""


class ToolUnavailable(LifecycleError):
    """docker or its compose plugin is not usable on this host."""


class BackupCommandError(LifecycleError):
    """The external backup command failed or timed out."""
