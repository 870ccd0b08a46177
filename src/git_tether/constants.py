from pathlib import Path

"""Global constants and configuration path definitions for Git Tether.

This module defines application identifiers, the git-level conventions used
when talking to a remote (reserved usernames, refspec markers, reference
namespaces) and the default locations of configuration files.
"""

# --- Identity ---
APP_NAME = "git-tether"
"""str: The human-readable application name, also used as the logger name."""

# --- Remote ---
DEFAULT_GIT_HOST = "github.com"
"""str: The git host used to build remote URLs when none is configured."""

DEFAULT_API_URL = "https://api.github.com"
"""str: The REST API root used to mint installation tokens."""

DEFAULT_REMOTE = "origin"
"""str: The remote name created by `git clone`."""

TOKEN_USERNAME = "x-access-token"
"""
str: The basic-auth username reserved for app installation tokens.
Personal access tokens accept any username.
"""

# --- References ---
HEAD_REF = "HEAD"
"""str: The reference cloned when no branch parameter is supplied."""

BRANCH_PARAM = "branch"
"""str: The repository parameter key that overrides the cloned branch."""

FORCE_MARKER = "+"
"""str: Refspec prefix that allows a non-fast-forward update."""

FOOTER_SEPARATOR = "-- "
"""str: Separator line placed between the commit body and footer."""

# --- Tokens ---
JWT_BACKDATE_SECONDS = 60
"""int: How far `iat` is backdated to tolerate clock drift with the API."""

JWT_LIFETIME_SECONDS = 9 * 60
"""int: Lifetime of the app JWT (the API rejects anything above 10 minutes)."""

PRIVATE_KEY_ENV = "GIT_TETHER_PRIVATE_KEY"
"""str: Environment variable that may hold the app private key (PEM)."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/git-tether"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""
