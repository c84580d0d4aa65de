"""Exceptions raised by the camera, capture, archive and configuration layers."""

from __future__ import annotations


class PtzWatchError(Exception):
    """Base class for all application errors."""


class ConfigError(PtzWatchError):
    """Raised when configuration is malformed or a required option is missing."""


class DeviceError(PtzWatchError):
    """Raised when the camera is unreachable or rejects a command."""


class CaptureError(PtzWatchError):
    """Raised when a frame cannot be extracted or its thumbnail cannot be built."""


class ArtifactExistsError(CaptureError):
    """Raised when an artifact for the same camera and second already exists."""


class StorageError(PtzWatchError):
    """Raised when the archive cannot be written to or deleted from."""


class UnknownCameraError(KeyError):
    """Raised when an ad-hoc capture names a camera this process does not drive."""
