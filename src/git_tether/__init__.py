"""Git Tether: token-authenticated clone, commit and push of remote repositories.

This package provides the synchronization pipeline (clone, branch switch,
commit, push), the ephemeral token providers it authenticates with, and a
small command-line front end.
"""

from . import (
    auth,
    backend,
    cli,
    config,
    constants,
    context,
    errors,
    git_wrapper,
    hooks,
    models,
    pipeline,
)

__all__ = [
    "auth",
    "backend",
    "cli",
    "config",
    "constants",
    "context",
    "errors",
    "git_wrapper",
    "hooks",
    "models",
    "pipeline",
]
