"""Checkpoint callbacks invoked as a pipeline run progresses."""

import logging
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class PipelineObserver:
    """Base observer; every checkpoint is a no-op.

    Subclass it and override the checkpoints of interest. Observers are called
    synchronously from the pipeline thread after each step succeeds.
    """

    def cloned(self, url: str, reference: str, path: Path) -> None:
        pass

    def branch_switched(self, repository: str, branch: str) -> None:
        pass

    def committed(self, repository: str, commit_id: str | None) -> None:
        """Called after the commit step; `commit_id` is None when nothing changed."""
        pass

    def pushed(self, repository: str, branch: str, force: bool) -> None:
        pass


class LoggingObserver(PipelineObserver):
    """Reports checkpoints to the application logger."""

    def cloned(self, url: str, reference: str, path: Path) -> None:
        logger.info(f"CLONED {url} ({reference}) into {path}")

    def branch_switched(self, repository: str, branch: str) -> None:
        logger.info(f"SWITCHED {repository}: on branch {branch}")

    def committed(self, repository: str, commit_id: str | None) -> None:
        if commit_id is None:
            logger.info(f"CLEAN {repository}: Nothing to commit.")
        else:
            logger.info(f"COMMITTED {repository}: {commit_id}")

    def pushed(self, repository: str, branch: str, force: bool) -> None:
        suffix = " (forced)" if force else ""
        logger.info(f"SUCCESS {repository}: Pushed {branch}{suffix}.")
