"""The clone → switch → commit → push synchronization pipeline.

Each operation works on one exclusively owned working tree and wraps every
backend failure in a typed error naming the operation and its target.
Remote-facing operations fetch a brand-new token right before they talk to
the remote; nothing is cached between steps.
"""

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .auth import BasicAuth, InstallationToken, TokenProvider
from .backend import Cloner, WorkingTree
from .config import AuthConfig, BranchOptions, PushOptions, UpdateOptions
from .constants import (
    APP_NAME,
    DEFAULT_GIT_HOST,
    DEFAULT_REMOTE,
    FOOTER_SEPARATOR,
    FORCE_MARKER,
    HEAD_REF,
)
from .context import Context
from .errors import (
    AuthError,
    BranchResolutionError,
    CheckoutError,
    CloneError,
    CommitError,
    GitCommandError,
    OperationCancelled,
    PushError,
    StageError,
    StatusError,
    TetherError,
)
from .git_wrapper import GitRepo
from .hooks import LoggingObserver, PipelineObserver
from .models import CommitOutcome, RepositoryIdentity, Signature

logger = logging.getLogger(APP_NAME)


def build_remote_url(identity: RepositoryIdentity, git_host: str = DEFAULT_GIT_HOST) -> str:
    """Returns the HTTPS clone URL, 'https://<host>/<owner>/<repo>.git'."""
    return f"https://{git_host}/{identity.full_name}.git"


def resolve_reference(identity: RepositoryIdentity) -> str:
    """Picks the reference to clone.

    Returns:
        str: 'refs/heads/<branch>' when the identity carries a non-blank
             branch parameter, otherwise 'HEAD' (the remote default).
    """
    if branch := identity.branch:
        return branch_ref(branch)
    return HEAD_REF


def branch_ref(branch: str) -> str:
    return f"refs/heads/{branch}"


def remote_tracking_ref(branch: str) -> str:
    return f"refs/remotes/{DEFAULT_REMOTE}/{branch}"


def build_commit_message(title: str, body: str = "", footer: str = "") -> str:
    """Assembles '<title>[\\n\\n<body>][\\n\\n-- \\n<footer>]'.

    Fragments are concatenated as given; nothing is trimmed or normalized.
    """
    message = title
    if body:
        message += "\n\n" + body
    if footer:
        message += f"\n\n{FOOTER_SEPARATOR}\n" + footer
    return message


def build_refspec(branch: str, force: bool = False) -> str:
    """Maps the local branch onto the same-named remote branch.

    With `force`, the refspec is prefixed with '+' so the remote accepts a
    non-fast-forward update and the local tip replaces the remote one.
    """
    refspec = f"{branch_ref(branch)}:{branch_ref(branch)}"
    if force:
        refspec = FORCE_MARKER + refspec
    return refspec


def _now() -> datetime:
    return datetime.now().astimezone()


class PipelineState(enum.Enum):
    """Progress of a single run. A raised error means the run failed."""

    IDLE = "idle"
    CLONED = "cloned"
    BRANCH_READY = "branch-ready"
    CHANGED = "changed"
    NO_OP = "no-op"
    PUSHED = "pushed"


@dataclass
class SyncResult:
    """Outcome of `SyncPipeline.run`.

    Attributes:
        state (PipelineState): The final state (NO_OP or PUSHED).
        outcome (CommitOutcome): What the commit step produced.
        repo (WorkingTree): The working tree, still on disk.
    """

    state: PipelineState
    outcome: CommitOutcome
    repo: WorkingTree


@dataclass
class SyncPipeline:
    """Runs the synchronization steps for one repository at a time.

    The pipeline holds only immutable collaborators, so a single instance may
    serve concurrent runs as long as each run uses its own working tree.

    Attributes:
        token_provider (TokenProvider): Issues a fresh token per remote operation.
        observer (PipelineObserver): Receives checkpoint notifications.
        clock (Callable[[], datetime]): Source of commit timestamps.
        cloner (Cloner): Materializes remote repositories.
        git_host (str): Host used to build remote URLs.
    """

    token_provider: TokenProvider
    observer: PipelineObserver = field(default_factory=LoggingObserver)
    clock: Callable[[], datetime] = _now
    cloner: Cloner = GitRepo.clone
    git_host: str = DEFAULT_GIT_HOST

    def _fetch_token(
        self, config: AuthConfig, ctx: Context | None
    ) -> InstallationToken:
        try:
            return self.token_provider.issue(config, ctx)
        except (AuthError, OperationCancelled):
            raise
        except Exception as e:
            raise AuthError(f"Token provider failed: {e}") from e

    def clone(
        self,
        identity: RepositoryIdentity,
        local_path: Path,
        auth_config: AuthConfig,
        ctx: Context | None = None,
    ) -> WorkingTree:
        """Clones the repository into `local_path`.

        Args:
            identity (RepositoryIdentity): The repository to clone.
            local_path (Path): Destination directory, created if missing.
            auth_config (AuthConfig): Credentials for the token provider.
            ctx (Context | None, optional): Cancellation and deadline signal.

        Returns:
            WorkingTree: The handle on the cloned working tree.

        Raises:
            AuthError: If no token could be issued.
            CloneError: On any transport, authentication or filesystem error.
        """
        url = build_remote_url(identity, self.git_host)
        reference = resolve_reference(identity)
        logger.debug(f"Cloning {url} ({reference}) into {local_path}")

        token = self._fetch_token(auth_config, ctx)

        try:
            repo = self.cloner(
                url, local_path, reference, BasicAuth.for_token(token.token), ctx
            )
        except (GitCommandError, OSError, ValueError) as e:
            raise CloneError(
                f"Failed to clone {url} to {local_path} at {reference}: {e}",
                url=url,
                path=str(local_path),
                reference=reference,
            ) from e

        self.observer.cloned(url, reference, local_path)
        return repo

    def switch_branch(
        self,
        repo: WorkingTree,
        options: BranchOptions,
        ctx: Context | None = None,
    ) -> None:
        """Positions the working tree on the target branch.

        When the branch is not created, its remote-tracking reference is
        resolved and a local branch is pinned to that exact commit before the
        checkout, so the branch starts at the remote tip and not at HEAD.

        Raises:
            BranchResolutionError: If the remote branch does not exist.
            CheckoutError: If the reference cannot be stored or checked out.
        """
        repo_name = repo.path.name
        branch = options.branch_name
        if not branch.strip():
            raise CheckoutError("No branch name given", repository=repo_name)

        if not options.create_branch:
            remote_ref = remote_tracking_ref(branch)
            sha = repo.resolve_reference(remote_ref, ctx)
            if sha is None:
                raise BranchResolutionError(
                    f"Remote branch {remote_ref} not found in {repo_name}",
                    repository=repo_name,
                    branch=branch,
                    reference=remote_ref,
                )
            try:
                repo.set_reference(branch_ref(branch), sha, ctx)
            except GitCommandError as e:
                raise CheckoutError(
                    f"Failed to store the reference for branch {branch}: {e}",
                    repository=repo_name,
                    branch=branch,
                ) from e

        try:
            repo.checkout(branch, create=options.create_branch, ctx=ctx)
        except GitCommandError as e:
            raise CheckoutError(
                f"Failed to checkout the branch {branch}: {e}",
                repository=repo_name,
                branch=branch,
            ) from e

        logger.debug(f"Switched {repo_name} to branch {branch}")
        self.observer.branch_switched(repo_name, branch)

    def commit_changes(
        self,
        repo: WorkingTree,
        options: UpdateOptions,
        ctx: Context | None = None,
    ) -> CommitOutcome:
        """Stages and commits working tree changes.

        A clean working tree is not an error: nothing is staged or committed
        and a negative outcome is returned.

        Configured patterns are staged first, in order. `stage_all_changed`
        additionally commits every tracked modification; it complements the
        patterns rather than replacing them.

        Raises:
            StatusError: If the working tree status cannot be read.
            StageError: If staging one of the patterns fails.
            CommitError: If the commit cannot be created.
        """
        repo_name = repo.path.name
        git = options.git

        try:
            status = repo.status(ctx)
        except GitCommandError as e:
            raise StatusError(
                f"Failed to get the worktree status: {e}", repository=repo_name
            ) from e

        if not status:
            logger.debug(f"Working tree of {repo_name} is clean")
            self.observer.committed(repo_name, None)
            return CommitOutcome(changed=False)

        logger.debug(f"Git status {repo_name}: {len(status)} changed path(s)")

        for pattern in git.stage_patterns:
            try:
                matched = repo.add_glob(pattern, ctx)
            except (GitCommandError, ValueError) as e:
                raise StageError(
                    f"Failed to stage files using pattern {pattern}: {e}",
                    pattern=pattern,
                    repository=repo_name,
                ) from e
            logger.debug(f"Staged {len(matched)} path(s) for pattern '{pattern}'")

        now = self.clock()
        message = build_commit_message(
            git.commit_title, git.commit_body, git.commit_footer
        )
        try:
            commit_id = repo.commit(
                message,
                author=Signature(git.author_name, git.author_email, now),
                committer=Signature(git.committer_name, git.committer_email, now),
                all=git.stage_all_changed,
                ctx=ctx,
            )
        except GitCommandError as e:
            raise CommitError(f"Failed to commit: {e}", repository=repo_name) from e

        self.observer.committed(repo_name, commit_id)
        return CommitOutcome(changed=True, commit_id=commit_id)

    def push_changes(
        self,
        repo: WorkingTree,
        options: PushOptions,
        ctx: Context | None = None,
    ) -> None:
        """Publishes the local branch to the same-named remote branch.

        Raises:
            AuthError: If no token could be issued.
            PushError: On transport failure or when the remote rejects the update.
        """
        repo_name = repo.path.name
        branch = options.branch_name
        refspec = build_refspec(branch, options.force_push)

        token = self._fetch_token(options.auth_config, ctx)

        logger.debug(f"Pushing {repo_name} {refspec}")
        try:
            repo.push([refspec], BasicAuth.for_token(token.token), ctx)
        except GitCommandError as e:
            raise PushError(
                f"Failed to push branch {branch} to {repo_name}: {e}",
                branch=branch,
                repository=repo_name,
            ) from e

        self.observer.pushed(repo_name, branch, options.force_push)

    def run(
        self,
        identity: RepositoryIdentity,
        local_path: Path,
        options: UpdateOptions,
        auth_config: AuthConfig,
        mutate: Callable[[WorkingTree], None] | None = None,
        ctx: Context | None = None,
        push_unchanged: bool = False,
    ) -> SyncResult:
        """Runs clone, switch, mutate, commit and push for one repository.

        Args:
            identity (RepositoryIdentity): The repository to synchronize.
            local_path (Path): Where to clone it.
            options (UpdateOptions): Branch, commit and push settings.
            auth_config (AuthConfig): Credentials for the token provider.
            mutate (Callable[[WorkingTree], None] | None, optional): Called with the
                working tree after the branch is ready, to change files.
            ctx (Context | None, optional): Cancellation and deadline signal.
            push_unchanged (bool, optional): Push even when nothing was committed.

        Returns:
            SyncResult: The final state, commit outcome and working tree.
        """
        ctx = ctx or Context.background()
        state = PipelineState.IDLE
        try:
            repo = self.clone(identity, local_path, auth_config, ctx)
            state = PipelineState.CLONED

            self.switch_branch(repo, options.branch_options(), ctx)
            state = PipelineState.BRANCH_READY

            if mutate:
                mutate(repo)

            outcome = self.commit_changes(repo, options, ctx)
            state = PipelineState.CHANGED if outcome.changed else PipelineState.NO_OP

            if outcome.changed or push_unchanged:
                self.push_changes(repo, options.push_options(auth_config), ctx)
                state = PipelineState.PUSHED
        except (TetherError, OperationCancelled) as e:
            logger.error(f"FAILED {identity.full_name} after {state.value}: {e}")
            raise

        return SyncResult(state=state, outcome=outcome, repo=repo)
