"""Capability interface the pipeline needs from a version-control backend.

`git_wrapper.GitRepo` implements it on top of the git CLI; tests substitute
in-memory fakes.
"""

from pathlib import Path
from typing import Protocol

from .auth import BasicAuth
from .context import Context
from .models import Signature


class WorkingTree(Protocol):
    """An exclusively owned, cloned repository."""

    path: Path

    def current_branch(self, ctx: Context | None = None) -> str:
        """Returns the checked-out branch name, empty when HEAD is detached."""
        ...

    def resolve_reference(self, ref: str, ctx: Context | None = None) -> str | None:
        """Resolves a fully qualified reference to a commit hash, or None if absent."""
        ...

    def set_reference(self, ref: str, sha: str, ctx: Context | None = None) -> None:
        """Points `ref` at `sha`, creating it if needed."""
        ...

    def checkout(
        self, branch: str, create: bool = False, ctx: Context | None = None
    ) -> None:
        """Switches the working tree to `branch`, creating it from HEAD if asked."""
        ...

    def status(self, ctx: Context | None = None) -> list[str]:
        """Returns porcelain status lines; an empty list means the tree is clean."""
        ...

    def add_glob(self, pattern: str, ctx: Context | None = None) -> list[str]:
        """Stages files matching `pattern` and returns the matched paths."""
        ...

    def commit(
        self,
        message: str,
        author: Signature,
        committer: Signature,
        all: bool = False,
        ctx: Context | None = None,
    ) -> str:
        """Creates a commit on the current branch and returns its hash."""
        ...

    def push(
        self,
        refspecs: list[str],
        auth: BasicAuth,
        ctx: Context | None = None,
    ) -> None:
        """Pushes `refspecs` to the clone's remote."""
        ...


class Cloner(Protocol):
    """Materializes a remote repository into a local working tree."""

    def __call__(
        self,
        url: str,
        local_path: Path,
        reference: str,
        auth: BasicAuth,
        ctx: Context | None = None,
    ) -> WorkingTree: ...
