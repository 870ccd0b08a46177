"""Value objects exchanged between the pipeline and its callers."""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from .constants import BRANCH_PARAM

_SLUG_PART = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class RepositoryIdentity:
    """Identifies a remote repository and carries free-form parameters.

    Attributes:
        owner (str): The account or organization owning the repository.
        name (str): The repository name.
        params (Mapping[str, str]): Read-only parameters (e.g. 'branch').
    """

    owner: str
    name: str
    params: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        # Freeze a private copy so later edits by the caller are not observed.
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @classmethod
    def parse(
        cls, slug: str, params: Mapping[str, str] | None = None
    ) -> "RepositoryIdentity":
        """Builds an identity from an 'owner/name' slug.

        Args:
            slug (str): The repository slug. A trailing '.git' is tolerated.
            params (Mapping[str, str] | None, optional): Repository parameters.

        Returns:
            RepositoryIdentity: The parsed identity.

        Raises:
            ValueError: If the slug is not of the form 'owner/name'.
        """
        cleaned = slug.strip().removesuffix(".git")
        parts = cleaned.split("/")
        if len(parts) != 2 or not all(_SLUG_PART.match(p) for p in parts):
            raise ValueError(f"Invalid repository slug '{slug}'")
        return cls(owner=parts[0], name=parts[1], params=params or {})

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def branch(self) -> str | None:
        """The branch override, or None when the parameter is absent or blank."""
        value = self.params.get(BRANCH_PARAM)
        if value is None or not value.strip():
            return None
        return value


@dataclass(frozen=True)
class Signature:
    """A git identity with the moment it acted.

    Attributes:
        name (str): Person name.
        email (str): Email address.
        when (datetime): Timezone-aware timestamp.
    """

    name: str
    email: str
    when: datetime

    def git_date(self) -> str:
        """Formats the timestamp in git's internal '<unix> <+hhmm>' format."""
        when = self.when if self.when.tzinfo else self.when.astimezone()
        return f"{int(when.timestamp())} {when.strftime('%z')}"


@dataclass(frozen=True)
class CommitOutcome:
    """Result of the commit step.

    Attributes:
        changed (bool): Whether a commit was created.
        commit_id (str | None): The new commit hash when `changed` is True.
    """

    changed: bool
    commit_id: str | None = None
