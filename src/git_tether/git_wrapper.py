import logging
import os
import subprocess
from pathlib import Path

from .auth import BasicAuth
from .constants import APP_NAME, DEFAULT_REMOTE, HEAD_REF
from .context import Context
from .errors import GitCommandError
from .models import Signature

logger = logging.getLogger(APP_NAME)

POLL_INTERVAL = 0.1
"""float: Seconds between cancellation checks while a git process runs."""


def _git(
    args: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    ctx: Context | None = None,
) -> str:
    """Executes a git command, aborting it if the context is cancelled.

    Args:
        args (list[str]): Arguments passed to the git executable.
        cwd (Path): The working directory for the process.
        env (dict[str, str] | None, optional): Extra environment variables,
                                               merged over the current environment.
        ctx (Context | None, optional): Cancellation and deadline signal.

    Returns:
        str: The stripped stdout of the command.

    Raises:
        GitCommandError: If the git command returns a non-zero exit code.
        OperationCancelled: If the context was cancelled or timed out.
    """
    operation = f"git {args[0]}"
    if ctx:
        ctx.check(operation)

    full_env = os.environ.copy()
    # Fail instead of prompting for credentials on a terminal.
    full_env["GIT_TERMINAL_PROMPT"] = "0"
    if env:
        full_env.update(env)

    proc = subprocess.Popen(
        ["git", *args],
        cwd=cwd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=full_env,
    )
    while True:
        try:
            stdout, stderr = proc.communicate(
                timeout=POLL_INTERVAL if ctx else None
            )
            break
        except subprocess.TimeoutExpired:
            if ctx and ctx.done():
                proc.kill()
                proc.communicate()
                logger.debug(f"Aborted {operation} in {cwd}")
                ctx.check(operation)

    if proc.returncode != 0:
        raise GitCommandError(args, proc.returncode, stderr or "")
    return (stdout or "").strip()


def check_glob(pattern: str) -> None:
    """Rejects glob patterns with broken syntax.

    git's wildmatch accepts any string, so an unclosed '[' class or a trailing
    escape would silently match nothing. Patterns starting with ':' carry
    pathspec magic and are left for git to validate.

    Raises:
        ValueError: If the pattern is malformed.
    """
    if pattern.startswith(":"):
        return

    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "\\":
            if i + 1 >= n:
                raise ValueError(f"Malformed glob pattern '{pattern}': trailing escape")
            i += 2
        elif c == "[":
            i += 1
            if i < n and pattern[i] in "!^":
                i += 1
            # A ']' right after the opening bracket is a literal member.
            if i < n and pattern[i] == "]":
                i += 1
            while i < n and pattern[i] != "]":
                if pattern[i] == "\\":
                    i += 1
                i += 1
            if i >= n:
                raise ValueError(
                    f"Malformed glob pattern '{pattern}': unclosed character class"
                )
            i += 1
        else:
            i += 1


class GitRepo:
    """A wrapper around the Git command-line interface for a cloned repository.

    Each instance is the exclusive handle of one pipeline run: it is created by
    `clone`, mutated by the later steps and never shared between runs.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def clone(
        cls,
        url: str,
        local_path: Path,
        reference: str,
        auth: BasicAuth,
        ctx: Context | None = None,
    ) -> "GitRepo":
        """Clones `url` into `local_path` and checks out `reference`.

        Args:
            url (str): The remote URL.
            local_path (Path): Destination directory; created with its parents.
            reference (str): 'HEAD' for the remote default branch, otherwise a
                             fully qualified 'refs/heads/<branch>' reference.
            auth (BasicAuth): HTTP credentials for the remote.
            ctx (Context | None, optional): Cancellation and deadline signal.

        Returns:
            GitRepo: A handle on the new working tree.
        """
        # git runs from the parent directory, so a relative target would nest.
        local_path = local_path.resolve()
        local_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = ["clone"]
        if reference != HEAD_REF:
            cmd.extend(["--branch", reference.removeprefix("refs/heads/")])
        cmd.extend(["--", url, str(local_path)])
        _git(cmd, cwd=local_path.parent, env=auth.git_env(), ctx=ctx)
        return cls(local_path)

    def _run(
        self,
        args: list[str],
        env: dict[str, str] | None = None,
        ctx: Context | None = None,
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            env (dict[str, str] | None, optional): Extra environment variables.
            ctx (Context | None, optional): Cancellation and deadline signal.

        Returns:
            str: The stripped stdout of the command.

        Raises:
            GitCommandError: If the git command returns a non-zero exit code.
        """
        return _git(args, cwd=self.path, env=env, ctx=ctx)

    def current_branch(self, ctx: Context | None = None) -> str:
        """Retrieves the name of the currently checked-out branch.

        Args:
            ctx (Context | None, optional): Cancellation and deadline signal.

        Returns:
            str: The name of the current branch (empty when HEAD is detached).
        """
        return self._run(["branch", "--show-current"], ctx=ctx)

    def resolve_reference(self, ref: str, ctx: Context | None = None) -> str | None:
        """Resolves a reference to a full commit SHA-1 hash.

        Args:
            ref (str): The reference to resolve (e.g. 'refs/remotes/origin/main').
            ctx (Context | None, optional): Cancellation and deadline signal.

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the reference does not exist.
        """
        try:
            return self._run(
                ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], ctx=ctx
            )
        except GitCommandError as e:
            logger.debug(f"rev-parse failed for '{ref}': {e}")
            return None

    def set_reference(self, ref: str, sha: str, ctx: Context | None = None) -> None:
        """Points a reference at a specific object ID, creating it if needed.

        Args:
            ref (str): The reference to update (e.g., 'refs/heads/main').
            sha (str): The target SHA-1 hash.
            ctx (Context | None, optional): Cancellation and deadline signal.
        """
        self._run(["update-ref", "-m", f"{APP_NAME}: pin {ref}", ref, sha], ctx=ctx)

    def checkout(
        self, branch: str, create: bool = False, ctx: Context | None = None
    ) -> None:
        """Switches the working tree to a branch.

        Args:
            branch (str): The target branch name.
            create (bool, optional): Create the branch at HEAD first. Fails if a
                                     branch with that name already exists.
            ctx (Context | None, optional): Cancellation and deadline signal.
        """
        cmd = ["switch"]
        cmd.extend(["--create", branch] if create else ["--no-guess", branch])
        self._run(cmd, ctx=ctx)

    def status(self, ctx: Context | None = None) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository.

        Untracked files are included, so a new file makes the tree dirty.

        Returns:
            list[str]: A list of status lines returned by `git status --porcelain`.
        """
        output = self._run(["status", "--porcelain"], ctx=ctx)
        return output.splitlines() if output else []

    def add_glob(self, pattern: str, ctx: Context | None = None) -> list[str]:
        """Stages every file matching a glob pattern.

        Plain patterns use git's `:(glob)` pathspec magic, where `*` does not
        cross directory boundaries and `**` does. Patterns starting with ':' are
        passed through as explicit pathspec magic. A pattern that matches
        nothing is not an error.

        Args:
            pattern (str): The glob pattern, relative to the repository root.
            ctx (Context | None, optional): Cancellation and deadline signal.

        Returns:
            list[str]: The paths matched by the pattern.

        Raises:
            ValueError: If the glob syntax is malformed.
            GitCommandError: If git rejects the pathspec.
        """
        check_glob(pattern)
        pathspec = pattern if pattern.startswith(":") else f":(glob){pattern}"
        output = self._run(
            [
                "ls-files",
                "-z",
                "--cached",
                "--others",
                "--exclude-standard",
                "--",
                pathspec,
            ],
            ctx=ctx,
        )
        matches = sorted({p for p in output.split("\0") if p})
        if not matches:
            logger.debug(f"Pattern '{pattern}' matched no files in {self.path.name}")
            return []

        self._run(["add", "--all", "--", pathspec], ctx=ctx)
        return matches

    def commit(
        self,
        message: str,
        author: Signature,
        committer: Signature,
        all: bool = False,
        ctx: Context | None = None,
    ) -> str:
        """Creates a new commit with the provided message and identities.

        The message is stored verbatim: git's default cleanup would strip
        trailing whitespace such as the one in the footer separator. An empty
        message is committed as is.

        Args:
            message (str): The commit message.
            author (Signature): The author identity and timestamp.
            committer (Signature): The committer identity and timestamp.
            all (bool, optional): Stage all tracked modifications (`--all`).
            ctx (Context | None, optional): Cancellation and deadline signal.

        Returns:
            str: The SHA-1 hash of the new commit.
        """
        env = {
            "GIT_AUTHOR_NAME": author.name,
            "GIT_AUTHOR_EMAIL": author.email,
            "GIT_AUTHOR_DATE": author.git_date(),
            "GIT_COMMITTER_NAME": committer.name,
            "GIT_COMMITTER_EMAIL": committer.email,
            "GIT_COMMITTER_DATE": committer.git_date(),
        }
        cmd = ["commit", "--cleanup=verbatim", "--allow-empty-message", "-m", message]
        if all:
            cmd.append("--all")
        self._run(cmd, env=env, ctx=ctx)
        return self._run(["rev-parse", "HEAD"], ctx=ctx)

    def push(
        self,
        refspecs: list[str],
        auth: BasicAuth,
        ctx: Context | None = None,
    ) -> None:
        """Pushes refspecs to the remote the repository was cloned from.

        Args:
            refspecs (list[str]): Refspecs such as '+refs/heads/a:refs/heads/a'.
            auth (BasicAuth): HTTP credentials for the remote.
            ctx (Context | None, optional): Cancellation and deadline signal.
        """
        self._run(["push", DEFAULT_REMOTE, *refspecs], env=auth.git_env(), ctx=ctx)
