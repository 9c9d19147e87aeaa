"""Exception types raised by the Janus scene exporter.

Three families matter to callers:

- ``SkippableAssetError`` -- one asset is unusable (empty mesh, missing
  lightmap file, unreadable image).  The item is dropped, a warning is
  logged, and the export carries on.
- ``ConfigurationError`` -- the export cannot start or continue at all
  (bad option value, output directory cannot be created).
- ``EncodingError`` -- an image or mesh encoder failed while writing.  The
  asset keeps an unresolved path so the serializer leaves it out.
"""

from __future__ import annotations


class ExportError(Exception):
    """Base class for all exporter errors."""


class SkippableAssetError(ExportError):
    """An asset cannot be exported; skip it and continue."""


class ConfigurationError(ExportError):
    """Unrecoverable setup problem; the export aborts."""


class EncodingError(ExportError):
    """An encoder raised while writing an asset file."""


class BakingStateError(RuntimeError):
    """A render target was used out of acquire/clear/draw/read/release order."""


class ExportStageError(RuntimeError):
    """A pipeline stage failed.  ``stage`` names the failing stage."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage
