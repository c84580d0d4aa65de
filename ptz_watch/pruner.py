"""Retention pruner: deletes captures older than the retention window.

Runs once at start-up and then on a fixed interval, independent of session
activity. After deleting old artifacts it removes directories left empty,
deepest first, so a fully expired day disappears in one pass.
"""

import glob
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .archive import EXT, Archive, parse_timestamp
from .config import Config
from .schedule import RepeatingTimer

logger = logging.getLogger(__name__)


@dataclass
class PruneReport:
    """Outcome of one prune pass."""
    files_deleted: int = 0
    dirs_deleted: int = 0
    errors: List[str] = field(default_factory=list)


class RetentionPruner:
    """Periodic garbage collection of the archive."""

    def __init__(
        self,
        archive: Archive,
        max_age: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> None:
        """Create a pruner (not started).

        Args:
          archive: Archive to prune.
          max_age: Retention window in seconds.
          interval: Seconds between passes.
        """
        self.archive = archive
        self.max_age = max_age or Config.PRUNE_MAX_AGE_SEC
        self.interval = interval or Config.PRUNE_INTERVAL_SEC
        self._timer: Optional[RepeatingTimer] = None

    def start(self) -> None:
        """Run a pass now and then every `interval` seconds on a background thread."""
        if self._timer is not None:
            return
        self._timer = RepeatingTimer(self.interval, self._run_pass, name="retention-pruner", run_immediately=True)
        self._timer.start()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _run_pass(self) -> None:
        report = self.prune()
        logger.info(
            "Prune pass removed %d files and %d directories (%d errors)",
            report.files_deleted, report.dirs_deleted, len(report.errors),
        )

    def prune(self, now: Optional[datetime] = None) -> PruneReport:
        """Run a single prune pass.

        An artifact is kept iff `now - timestamp <= max_age`. Failures on
        individual files or directories are logged and skipped.

        Args:
          now: Reference time; defaults to the current local time.

        Returns:
          Counts of deleted files/directories and the errors encountered.
        """
        now = now or datetime.now()
        boundary = now - timedelta(seconds=self.max_age)
        report = PruneReport()

        pattern = os.path.join(glob.escape(self.archive.root), "*", "*", "*" + EXT)
        for path in sorted(glob.glob(pattern)):
            name = os.path.basename(path)
            try:
                ts = parse_timestamp(name)
            except ValueError:
                logger.warning("Skipping file with unparseable name: %s", path)
                continue
            if ts >= boundary:
                continue
            for target in (path, self.archive.thumb_for(path)):
                try:
                    os.remove(target)
                    report.files_deleted += 1
                except FileNotFoundError:
                    pass  # Thumbnail may never have been written
                except OSError as e:
                    logger.error("Could not delete %s: %s", target, e)
                    report.errors.append(f"{target}: {e}")

        report.dirs_deleted = self._remove_empty_dirs(report)
        return report

    def _remove_empty_dirs(self, report: PruneReport) -> int:
        root = os.path.abspath(self.archive.root)
        dirs = [dirpath for dirpath, _, _ in os.walk(root) if dirpath != root]
        removed = 0
        # Reverse order visits children before their parents
        for d in sorted(dirs, reverse=True):
            try:
                if os.listdir(d):
                    continue
                os.rmdir(d)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error("Could not remove directory %s: %s", d, e)
                report.errors.append(f"{d}: {e}")
        return removed


def make_pruner(archive: Optional[Archive] = None) -> RetentionPruner:
    """Build a `RetentionPruner` from config."""
    return RetentionPruner(archive or Archive(Config.ARCHIVE_DIR))
