"""Tests for value objects and the cancellation context."""

import dataclasses
import threading
from datetime import datetime, timedelta, timezone

import pytest

from git_tether.context import Context
from git_tether.errors import DeadlineExceeded, OperationCancelled
from git_tether.models import RepositoryIdentity, Signature


@pytest.mark.parametrize(
    ("slug", "owner", "name"),
    [
        ("acme/widgets", "acme", "widgets"),
        ("acme/widgets.git", "acme", "widgets"),
        (" my-org/repo_name.v2 ", "my-org", "repo_name.v2"),
    ],
)
def test_identity_parse(slug: str, owner: str, name: str) -> None:
    identity = RepositoryIdentity.parse(slug)
    assert (identity.owner, identity.name) == (owner, name)
    assert identity.full_name == f"{owner}/{name}"


@pytest.mark.parametrize("slug", ["widgets", "a/b/c", "/widgets", "acme/", "ac me/x"])
def test_identity_parse_rejects_bad_slugs(slug: str) -> None:
    with pytest.raises(ValueError, match="Invalid repository slug"):
        RepositoryIdentity.parse(slug)


def test_identity_is_immutable() -> None:
    """Verifies parameters cannot be changed through or around the identity."""
    params = {"branch": "develop"}
    identity = RepositoryIdentity("acme", "widgets", params)

    params["branch"] = "main"
    assert identity.branch == "develop"

    with pytest.raises(TypeError):
        identity.params["branch"] = "main"  # type: ignore[index]
    with pytest.raises(dataclasses.FrozenInstanceError):
        identity.owner = "other"  # type: ignore[misc]


@pytest.mark.parametrize(
    ("params", "expected"),
    [({}, None), ({"branch": ""}, None), ({"branch": "  "}, None), ({"branch": "x"}, "x")],
)
def test_identity_branch(params: dict, expected: str | None) -> None:
    assert RepositoryIdentity("acme", "widgets", params).branch == expected


def test_identity_hash_ignores_params() -> None:
    a = RepositoryIdentity("acme", "widgets", {"branch": "x"})
    b = RepositoryIdentity("acme", "widgets", {"branch": "x"})
    assert a == b
    assert hash(a) == hash(b)


def test_signature_git_date() -> None:
    utc = Signature("A", "a@example.com", datetime(2024, 5, 17, 9, 30, tzinfo=timezone.utc))
    assert utc.git_date() == "1715938200 +0000"

    ist = timezone(timedelta(hours=5, minutes=30))
    local = Signature("A", "a@example.com", datetime(2024, 5, 17, 15, 0, tzinfo=ist))
    assert local.git_date() == "1715938200 +0530"


def test_background_context_never_done() -> None:
    ctx = Context.background()
    assert not ctx.done()
    assert ctx.remaining() is None
    ctx.check("anything")


def test_context_cancel() -> None:
    ctx = Context(timeout=60)
    ctx.cancel()

    assert ctx.cancelled
    assert ctx.done()
    with pytest.raises(OperationCancelled, match="git push: cancelled"):
        ctx.check("git push")


def test_context_deadline() -> None:
    ctx = Context(timeout=0)

    assert ctx.done()
    assert ctx.remaining() == 0.0
    with pytest.raises(DeadlineExceeded, match="clone: deadline exceeded"):
        ctx.check("clone")


def test_context_external_event() -> None:
    event = threading.Event()
    ctx = Context(cancel_event=event)
    assert not ctx.done()

    event.set()

    assert ctx.cancelled
