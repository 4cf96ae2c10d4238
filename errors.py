"""
Exception types for genplan.

Only a few of these ever reach the user. UnsafePathError is caught by the
parser, ApplyFailure and VersionControlError are recorded in a
GenerationResult, and LedgerCorruptionError is recovered by resetting the
ledger. The rest signal programming or configuration mistakes.
"""


class GenplanError(Exception):
    """Base class for every genplan error."""


class UnsafePathError(GenplanError, ValueError):
    """A candidate path resolves outside the project root."""

    def __init__(self, path: str, root: str):
        self.path = path
        self.root = root
        super().__init__(
            f"Access denied: path '{path}' is outside project boundary '{root}'"
        )


class ApplyFailure(GenplanError):
    """Writing or removing one operation's file failed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to process {path}: {reason}")


class VersionControlError(GenplanError):
    """A git command exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(
            f"git {' '.join(self.args_list)} failed with exit code {returncode}{detail}"
        )


class LedgerCorruptionError(GenplanError):
    """The persisted ledger could not be read or validated."""


class InvalidTransitionError(GenplanError):
    """A todo or the approval loop was asked to move to a state it cannot reach."""


class TodoNotFoundError(GenplanError, KeyError):
    """No todo with the given id exists in the ledger."""

    def __str__(self) -> str:
        return f"Todo with id {self.args[0]} not found"


class ConfigError(GenplanError):
    """The configuration file exists but cannot be used."""


class ProviderError(GenplanError):
    """The text generation provider is misconfigured."""
