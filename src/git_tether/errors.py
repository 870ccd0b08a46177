"""Exception types raised by the synchronization pipeline.

Every domain error carries the name of the pipeline operation that failed and
the identifiers needed to locate the failure (URL, path, branch, repository).
Cancellation is reported separately so callers can tell an aborted run apart
from a failed one.
"""

from typing import Any


class GitCommandError(RuntimeError):
    """A git subprocess exited with a non-zero status.

    Attributes:
        args_list (list[str]): The git arguments.
        returncode (int): The process exit code.
        stderr (str): The captured standard error output.
    """

    def __init__(self, args_list: list[str], returncode: int, stderr: str):
        self.args_list = args_list
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr or f"exit status {returncode}"
        super().__init__(f"Git error: {detail}")


class TetherError(RuntimeError):
    """Base class for all pipeline errors.

    Attributes:
        operation (str): The pipeline operation that raised the error.
        details (dict[str, Any]): Identifiers describing the failed target.
    """

    operation = "pipeline"

    def __init__(self, message: str, **details: Any):
        self.details = details
        super().__init__(f"{self.operation}: {message}")


class AuthError(TetherError):
    """An ephemeral token could not be issued."""

    operation = "auth"


class CloneError(TetherError):
    """The remote repository could not be cloned."""

    operation = "clone"


class CheckoutError(TetherError):
    """The working tree could not be switched to the target branch."""

    operation = "switch-branch"


class BranchResolutionError(CheckoutError):
    """The remote-tracking branch expected to exist was not found."""


class StatusError(TetherError):
    """The working tree status could not be read."""

    operation = "commit"


class StageError(TetherError):
    """Staging files matching a pattern failed."""

    operation = "commit"


class CommitError(TetherError):
    """The commit object could not be created."""

    operation = "commit"


class PushError(TetherError):
    """The branch could not be published to the remote."""

    operation = "push"


class OperationCancelled(Exception):
    """The caller cancelled the running operation."""


class DeadlineExceeded(OperationCancelled):
    """The caller's deadline elapsed before the operation finished."""
