"""Date-partitioned capture archive.

Layout (the directory tree is the only index):

    {root}/{camera_id}/{YYYY-MM-DD}/{YYYY-MM-DDTHH:MM:SS}.jpg
    {root}/{camera_id}/{YYYY-MM-DD}/thumbs/{YYYY-MM-DDTHH:MM:SS}.jpg
"""

from __future__ import annotations

import os
from datetime import date, datetime
from typing import List, Optional

DATE_FORMAT = "%Y-%m-%d"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"
THUMBS_DIR = "thumbs"
EXT = ".jpg"


def format_date(d: date) -> str:
    """Return the sortable `YYYY-MM-DD` partition name for a date."""
    return d.strftime(DATE_FORMAT)


def format_timestamp(ts: datetime) -> str:
    """Return the sortable `YYYY-MM-DDTHH:MM:SS` artifact name (no extension)."""
    return ts.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse an artifact name (with or without `.jpg`) back into a datetime.

    Raises:
      ValueError: If the name does not follow the timestamp format.
    """
    if value.endswith(EXT):
        value = value[: -len(EXT)]
    return datetime.strptime(value, TIMESTAMP_FORMAT)


def check_camera_id(camera_id: str) -> str:
    """Reject camera ids that could escape the archive root."""
    if not camera_id or camera_id.startswith(".") or "/" in camera_id or "\\" in camera_id:
        raise ValueError(f"invalid camera id: {camera_id!r}")
    return camera_id


class Archive:
    """Path scheme and read-only query surface over the archive root."""

    def __init__(self, root: str) -> None:
        self.root = root

    def date_dir(self, camera_id: str, ts: datetime) -> str:
        return os.path.join(self.root, check_camera_id(camera_id), format_date(ts))

    def full_path(self, camera_id: str, ts: datetime) -> str:
        """Path of the full-resolution artifact for `(camera_id, ts)`."""
        return os.path.join(self.date_dir(camera_id, ts), format_timestamp(ts) + EXT)

    def thumb_path(self, camera_id: str, ts: datetime) -> str:
        """Path of the thumbnail artifact for `(camera_id, ts)`."""
        return os.path.join(self.date_dir(camera_id, ts), THUMBS_DIR, format_timestamp(ts) + EXT)

    def thumb_for(self, full_path: str) -> str:
        """Map a full-resolution path onto its paired thumbnail path."""
        head, name = os.path.split(full_path)
        return os.path.join(head, THUMBS_DIR, name)

    def list_cameras(self) -> List[str]:
        """Return camera identifiers (top-level directories), sorted."""
        try:
            names = os.listdir(self.root)
        except FileNotFoundError:
            return []
        return sorted(
            n for n in names
            if not n.startswith(".") and os.path.isdir(os.path.join(self.root, n))
        )

    def list_captures(self, camera_id: str, start: datetime, end: datetime) -> List[datetime]:
        """List capture timestamps for a camera within `[start, end]`.

        Only date directories between `start.date()` and `end.date()` are read.

        Args:
          camera_id: Camera partition.
          start: Inclusive lower bound.
          end: Inclusive upper bound.

        Returns:
          Sorted timestamps of full-resolution artifacts in range.
        """
        cam_dir = os.path.join(self.root, check_camera_id(camera_id))
        try:
            day_names = os.listdir(cam_dir)
        except FileNotFoundError:
            return []
        lo, hi = format_date(start), format_date(end)
        found: List[datetime] = []
        for day in day_names:
            if not lo <= day <= hi:
                continue
            day_dir = os.path.join(cam_dir, day)
            try:
                names = os.listdir(day_dir)
            except (FileNotFoundError, NotADirectoryError):
                continue
            for name in names:
                if not name.endswith(EXT):
                    continue
                try:
                    ts = parse_timestamp(name)
                except ValueError:
                    continue
                if start <= ts <= end:
                    found.append(ts)
        found.sort()
        return found

    def find_artifact(self, camera_id: str, ts: datetime, thumbnail: bool = False) -> Optional[str]:
        """Return the artifact path if it exists, else None."""
        path = self.thumb_path(camera_id, ts) if thumbnail else self.full_path(camera_id, ts)
        return path if os.path.isfile(path) else None
