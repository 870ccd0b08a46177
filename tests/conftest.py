"""Shared fixtures: in-memory stand-ins for the git backend and token issuer."""

import itertools
from datetime import datetime, timezone
from fnmatch import fnmatch
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_tether.auth import BasicAuth, InstallationToken, TokenProvider
from git_tether.config import AuthConfig, GitOptions, UpdateOptions
from git_tether.context import Context
from git_tether.errors import AuthError, GitCommandError
from git_tether.git_wrapper import check_glob
from git_tether.hooks import PipelineObserver
from git_tether.models import Signature
from git_tether.pipeline import SyncPipeline


class FakeRemote:
    """A remote holding branches and the commit graph (shared object store)."""

    def __init__(self, default_branch: str = "main"):
        self._ids = itertools.count(1)
        self.default_branch = default_branch
        self.parents: dict[str, list[str]] = {"c0": []}
        self.branches: dict[str, str] = {default_branch: "c0"}
        self.pushes: list[tuple[list[str], BasicAuth]] = []

    def new_commit(self, parent: str | None) -> str:
        sha = f"c{next(self._ids)}"
        self.parents[sha] = [parent] if parent else []
        return sha

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        pending = [descendant]
        while pending:
            sha = pending.pop()
            if sha == ancestor:
                return True
            pending.extend(self.parents.get(sha, []))
        return False


class FakeWorkingTree:
    """Implements the `WorkingTree` capability interface in memory."""

    def __init__(self, path: Path, remote: FakeRemote, head: str):
        self.path = path
        self.remote = remote
        self.head = head
        self.refs: dict[str, str] = {
            f"refs/remotes/origin/{b}": sha for b, sha in remote.branches.items()
        }
        self.refs[f"refs/heads/{head}"] = remote.branches[head]
        self.dirty: list[str] = []
        self.staged: list[str] = []
        self.checkouts: list[str] = []
        self.commits: dict[str, dict] = {}
        self.fail: dict[str, Exception] = {}

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail:
            raise self.fail[op]

    def current_branch(self, ctx: Context | None = None) -> str:
        return self.head

    def resolve_reference(self, ref: str, ctx: Context | None = None) -> str | None:
        return self.refs.get(ref)

    def set_reference(self, ref: str, sha: str, ctx: Context | None = None) -> None:
        self._maybe_fail("set_reference")
        self.refs[ref] = sha

    def checkout(
        self, branch: str, create: bool = False, ctx: Context | None = None
    ) -> None:
        self._maybe_fail("checkout")
        ref = f"refs/heads/{branch}"
        if create:
            if ref in self.refs:
                raise GitCommandError(
                    ["switch"], 128, f"fatal: a branch named '{branch}' already exists"
                )
            self.refs[ref] = self.refs[f"refs/heads/{self.head}"]
        elif ref not in self.refs:
            raise GitCommandError(["switch"], 128, f"fatal: invalid reference: {branch}")
        self.head = branch
        self.checkouts.append(branch)

    def status(self, ctx: Context | None = None) -> list[str]:
        if ctx:
            ctx.check("git status")
        self._maybe_fail("status")
        return [f"?? {p}" for p in self.dirty]

    def add_glob(self, pattern: str, ctx: Context | None = None) -> list[str]:
        check_glob(pattern)
        if pattern.startswith(":(") and not pattern.startswith(":(glob)"):
            raise GitCommandError(
                ["ls-files"], 128, f"fatal: Invalid pathspec magic in '{pattern}'"
            )
        matches = [p for p in self.dirty if fnmatch(p, pattern)]
        self.staged.extend(m for m in matches if m not in self.staged)
        return matches

    def commit(
        self,
        message: str,
        author: Signature,
        committer: Signature,
        all: bool = False,
        ctx: Context | None = None,
    ) -> str:
        self._maybe_fail("commit")
        if not self.staged and not all:
            raise GitCommandError(["commit"], 1, "nothing added to commit")
        ref = f"refs/heads/{self.head}"
        sha = self.remote.new_commit(self.refs[ref])
        self.refs[ref] = sha
        self.commits[sha] = {
            "message": message,
            "author": author,
            "committer": committer,
            "all": all,
            "files": list(self.dirty if all else self.staged),
        }
        self.dirty = [] if all else [p for p in self.dirty if p not in self.staged]
        self.staged = []
        return sha

    def push(
        self, refspecs: list[str], auth: BasicAuth, ctx: Context | None = None
    ) -> None:
        self.remote.pushes.append((list(refspecs), auth))
        for spec in refspecs:
            force = spec.startswith("+")
            src, dst = spec.lstrip("+").split(":")
            local = self.refs[src]
            branch = dst.removeprefix("refs/heads/")
            current = self.remote.branches.get(branch)
            if current and not force and not self.remote.is_ancestor(current, local):
                raise GitCommandError(
                    ["push"], 1, f"! [rejected] {branch} -> {branch} (non-fast-forward)"
                )
            self.remote.branches[branch] = local
            self.refs[f"refs/remotes/origin/{branch}"] = local


class FakeCloner:
    """Callable matching the `Cloner` protocol; records every clone."""

    def __init__(self, remote: FakeRemote):
        self.remote = remote
        self.calls: list[tuple[str, Path, str, BasicAuth]] = []
        self.trees: list[FakeWorkingTree] = []

    def __call__(
        self,
        url: str,
        local_path: Path,
        reference: str,
        auth: BasicAuth,
        ctx: Context | None = None,
    ) -> FakeWorkingTree:
        self.calls.append((url, local_path, reference, auth))
        head = (
            self.remote.default_branch
            if reference == "HEAD"
            else reference.removeprefix("refs/heads/")
        )
        if head not in self.remote.branches:
            raise GitCommandError(
                ["clone"], 128, f"fatal: Remote branch {head} not found in upstream origin"
            )
        local_path.mkdir(parents=True, exist_ok=True)
        tree = FakeWorkingTree(local_path, self.remote, head)
        self.trees.append(tree)
        return tree


class FakeTokenProvider(TokenProvider):
    """Issues 'token-1', 'token-2', ... and can fail on a chosen call."""

    def __init__(self, fail_on_call: int | None = None):
        self.calls = 0
        self.fail_on_call = fail_on_call

    def issue(self, config: AuthConfig, ctx: Context | None = None) -> InstallationToken:
        if ctx:
            ctx.check("auth")
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise AuthError("installation suspended")
        return InstallationToken(token=f"token-{self.calls}", api_url=config.api_url)


@pytest.fixture
def remote() -> FakeRemote:
    remote = FakeRemote()
    remote.branches["develop"] = remote.new_commit("c0")
    return remote


@pytest.fixture
def cloner(remote: FakeRemote) -> FakeCloner:
    return FakeCloner(remote)


@pytest.fixture
def token_provider() -> FakeTokenProvider:
    return FakeTokenProvider()


@pytest.fixture
def observer() -> MagicMock:
    return MagicMock(spec=PipelineObserver)


@pytest.fixture
def pipeline(
    cloner: FakeCloner,
    token_provider: FakeTokenProvider,
    observer: MagicMock,
    fixed_now: datetime,
) -> SyncPipeline:
    return SyncPipeline(
        token_provider=token_provider,
        observer=observer,
        clock=lambda: fixed_now,
        cloner=cloner,
        git_host="git.example.com",
    )


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 5, 17, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(app_id="123", installation_id="456", private_key="pem")


@pytest.fixture
def update_options() -> UpdateOptions:
    return UpdateOptions(
        git=GitOptions(
            stage_patterns=("*.txt",),
            commit_title="Update files",
            author_name="Ada Author",
            author_email="ada@example.com",
            committer_name="Bot Committer",
            committer_email="bot@example.com",
        ),
        branch_name="feature",
        create_branch=True,
    )
