import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_API_URL,
    DEFAULT_GIT_HOST,
    PRIVATE_KEY_ENV,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return num * multiplier[unit]


def default_api_url(git_host: str) -> str:
    """Derives the REST API root for a git host.

    github.com serves its API from a dedicated host; Enterprise Server
    instances serve it under '/api/v3' on the same host.
    """
    if git_host == DEFAULT_GIT_HOST:
        return DEFAULT_API_URL
    return f"https://{git_host}/api/v3"


# --- Pipeline options ---


@dataclass(frozen=True)
class AuthConfig:
    """Credentials used to mint ephemeral tokens.

    Attributes:
        app_id (str): The app identifier (JWT issuer).
        installation_id (str): The installation the token is scoped to.
        private_key (str): The app private key in PEM format.
        api_url (str): The REST API root.
        token (str | None): A static token used instead of app credentials.
    """

    app_id: str = ""
    installation_id: str = ""
    private_key: str = field(default="", repr=False)
    api_url: str = DEFAULT_API_URL
    token: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class GitOptions:
    """Staging and commit settings.

    Attributes:
        stage_patterns (tuple[str, ...]): Glob patterns staged in order.
        stage_all_changed (bool): Commit all tracked modifications (`--all`).
        commit_title (str): First line of the commit message.
        commit_body (str): Optional message body.
        commit_footer (str): Optional footer, placed after a '-- ' separator.
        author_name (str): Commit author name.
        author_email (str): Commit author email.
        committer_name (str): Committer name.
        committer_email (str): Committer email.
    """

    stage_patterns: tuple[str, ...] = ()
    stage_all_changed: bool = False
    commit_title: str = ""
    commit_body: str = ""
    commit_footer: str = ""
    author_name: str = ""
    author_email: str = ""
    committer_name: str = ""
    committer_email: str = ""


@dataclass(frozen=True)
class BranchOptions:
    branch_name: str
    create_branch: bool = False


@dataclass(frozen=True)
class PushOptions:
    auth_config: AuthConfig
    branch_name: str
    force_push: bool = False


@dataclass(frozen=True)
class UpdateOptions:
    """Declarative description of what a run commits and pushes.

    Attributes:
        git (GitOptions): Staging and commit settings.
        branch_name (str): The branch to commit on and push.
        create_branch (bool): Create the branch instead of tracking a remote one.
        force_push (bool): Allow non-fast-forward updates of the remote branch.
    """

    git: GitOptions = field(default_factory=GitOptions)
    branch_name: str = ""
    create_branch: bool = False
    force_push: bool = False

    def branch_options(self) -> BranchOptions:
        return BranchOptions(
            branch_name=self.branch_name, create_branch=self.create_branch
        )

    def push_options(self, auth_config: AuthConfig) -> PushOptions:
        return PushOptions(
            auth_config=auth_config,
            branch_name=self.branch_name,
            force_push=self.force_push,
        )


# --- File configuration ---


@dataclass
class CoreConfig:
    """Core settings.

    Attributes:
        git_host (str): Host used to build remote URLs.
        api_url (str): REST API root. Derived from `git_host` when empty.
        timeout (float | None): Seconds allowed for one run, None for no limit.
    """

    git_host: str = DEFAULT_GIT_HOST
    api_url: str = ""
    timeout: float | None = None


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class AuthSection:
    """Where credentials come from.

    Attributes:
        app_id (str): The app identifier.
        installation_id (str): The installation identifier.
        private_key_path (str): Path to the PEM private key.
        token_env (str): Environment variable holding a static token.
    """

    app_id: str = ""
    installation_id: str = ""
    private_key_path: str = ""
    token_env: str = "GITHUB_TOKEN"


@dataclass
class GitSection:
    """The [git] table; mirrors `GitOptions`."""

    stage_patterns: list[str] = field(default_factory=list)
    stage_all_changed: bool = False
    commit_title: str = ""
    commit_body: str = ""
    commit_footer: str = ""
    author_name: str = ""
    author_email: str = ""
    committer_name: str = ""
    committer_email: str = ""


@dataclass
class BranchSection:
    name: str = ""
    create: bool = False


@dataclass
class PushSection:
    """Push behaviour.

    Attributes:
        force (bool): Force-push the branch.
        push_unchanged (bool): Push even when nothing was committed.
    """

    force: bool = False
    push_unchanged: bool = False


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Core settings.
        limits (LimitsConfig): Resource limits.
        auth (AuthSection): Credential sources.
        git (GitSection): Staging and commit settings.
        branch (BranchSection): Branch selection.
        push (PushSection): Push behaviour.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    auth: AuthSection = field(default_factory=AuthSection)
    git: GitSection = field(default_factory=GitSection)
    branch: BranchSection = field(default_factory=BranchSection)
    push: PushSection = field(default_factory=PushSection)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, the global file and `path`.

        Args:
            path (Path | None): An explicit configuration file layered on top.

        Returns:
            Config: The fully merged configuration object.
        """
        instance = cls()
        if CONFIG_FILE.exists():
            instance._merge_from_file(CONFIG_FILE)
        if path:
            if path.exists():
                instance._merge_from_file(path)
            else:
                logger.warning(f"Config file not found: {path}")
        return instance

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
            return
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return

        for section in ("core", "limits", "auth", "git", "branch", "push"):
            if section in data:
                current = getattr(self, section)
                setattr(
                    self,
                    section,
                    self._update_dataclass(section, current, data[section]),
                )

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "timeout":
                    filtered_updates[k] = parse_time(v)
                elif k == "stage_patterns":
                    if not isinstance(v, list):
                        raise ValueError("Expected a list of patterns")
                    filtered_updates[k] = [str(p) for p in v]
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)

    # --- Conversion to pipeline options ---

    def update_options(self) -> UpdateOptions:
        """Builds the pipeline's update options from the [git], [branch] and [push] tables."""
        g = self.git
        return UpdateOptions(
            git=GitOptions(
                stage_patterns=tuple(g.stage_patterns),
                stage_all_changed=g.stage_all_changed,
                commit_title=g.commit_title,
                commit_body=g.commit_body,
                commit_footer=g.commit_footer,
                author_name=g.author_name,
                author_email=g.author_email,
                committer_name=g.committer_name or g.author_name,
                committer_email=g.committer_email or g.author_email,
            ),
            branch_name=self.branch.name,
            create_branch=self.branch.create,
            force_push=self.push.force,
        )

    def auth_config(self) -> AuthConfig:
        """Resolves credentials from the [auth] table and the environment.

        The private key is read from `private_key_path` when set, falling back
        to the GIT_TETHER_PRIVATE_KEY environment variable. A static token is
        taken from the variable named by `token_env`.

        Raises:
            OSError: If the configured private key file cannot be read.
        """
        private_key = ""
        if self.auth.private_key_path:
            private_key = Path(self.auth.private_key_path).expanduser().read_text()
        else:
            private_key = os.environ.get(PRIVATE_KEY_ENV, "")

        token = os.environ.get(self.auth.token_env) if self.auth.token_env else None

        return AuthConfig(
            app_id=str(self.auth.app_id),
            installation_id=str(self.auth.installation_id),
            private_key=private_key,
            api_url=self.core.api_url or default_api_url(self.core.git_host),
            token=token or None,
        )
