"""Side-upload coordinator — best-effort archive of the source artifact.

The archive runs as its own task next to inference. Nothing it does can
fail the request: errors are logged, and a task still running after the
grace period is cancelled and its result discarded.
"""

from __future__ import annotations

import asyncio
import logging

from sehatscan.core.archive.client import ArchivedArtifact, ArtifactArchiver
from sehatscan.core.inference.models import Artifact

logger = logging.getLogger(__name__)


class SideUploadCoordinator:
    """Starts, collects and cancels archive tasks.

    Usage::

        side = SideUploadCoordinator(archiver, grace_s=5.0)
        task = side.start(artifact)
        ...  # run inference
        archived = await side.collect(task)
    """

    def __init__(self, archiver: ArtifactArchiver | None, *, grace_s: float = 5.0) -> None:
        self._archiver = archiver
        self._grace_s = grace_s

    @property
    def enabled(self) -> bool:
        return self._archiver is not None

    def start(self, artifact: Artifact) -> asyncio.Task[ArchivedArtifact] | None:
        """Schedule the archive upload; None when no archiver is configured."""
        if self._archiver is None:
            return None
        return asyncio.ensure_future(self._archiver.archive(artifact))

    async def collect(self, task: asyncio.Task[ArchivedArtifact] | None) -> ArchivedArtifact | None:
        """Wait up to the grace period for the archive and return it if it succeeded."""
        if task is None:
            return None

        done, _ = await asyncio.wait({task}, timeout=self._grace_s)
        if task not in done:
            task.cancel()
            logger.warning("Archive upload still running after %.1fs, discarded", self._grace_s)
            return None
        if task.cancelled():
            return None

        exc = task.exception()
        if exc is not None:
            logger.warning("Archive upload failed: %s", exc)
            return None
        return task.result()

    def cancel(self, task: asyncio.Task[ArchivedArtifact] | None) -> None:
        """Abandon an archive whose request already failed."""
        if task is None:
            return
        if task.done():
            # Retrieve the exception so it is not reported as never retrieved.
            if not task.cancelled() and task.exception() is not None:
                logger.warning("Archive upload failed: %s", task.exception())
            return
        task.cancel()
