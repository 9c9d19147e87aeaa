"""
Image encoder: write pixel buffers as JPG/PNG with Pillow, or copy source
files verbatim when they are already in a format Janus can load.
"""

from __future__ import annotations

import logging
import os
import shutil
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from export_errors import EncodingError
from scene_model import to_rgba

logger = logging.getLogger("janus_export.images")

# Source files with these extensions are copied instead of re-encoded
COPYABLE_EXTENSIONS = (".png", ".jpg", ".jpeg")

ACTION_COPY = "copy"
ACTION_ENCODE = "encode"


def format_to_extension(file_format: str) -> str:
    """Map an export format name to a file extension."""
    mapping = {
        "JPG": ".jpg",
        "JPEG": ".jpg",
        "PNG": ".png",
        "EXR": ".exr",
    }
    return mapping.get(file_format.upper(), ".png")


def supports_alpha(file_format: str) -> bool:
    return format_to_extension(file_format) == ".png"


def plan_image_export(
    source_path: Optional[str],
    file_format: str,
    keep_alpha: bool,
    force_retranscode: bool = False,
) -> Tuple[str, str]:
    """Decide how an image reaches disk.

    Returns ``(action, extension)``: ``("copy", ".png")`` when the source file
    can be reused as is, otherwise ``("encode", ext)`` for the format that
    will be written.  JPG falls back to PNG when alpha must be kept.
    """
    if source_path and not force_retranscode:
        ext = os.path.splitext(source_path)[1].lower()
        if ext in COPYABLE_EXTENSIONS:
            return ACTION_COPY, ext
    if keep_alpha and not supports_alpha(file_format):
        return ACTION_ENCODE, ".png"
    return ACTION_ENCODE, format_to_extension(file_format)


def to_uint8(pixels: np.ndarray) -> np.ndarray:
    return (np.clip(np.asarray(pixels, dtype=np.float32), 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)


class ImageEncoder:
    """Pillow-backed image writer."""

    def encode(
        self,
        pixels: np.ndarray,
        path_base: str,
        file_format: str,
        quality: int = 70,
        keep_alpha: bool = False,
    ) -> str:
        """Write *pixels* (float RGBA) to ``path_base + ext``; return the extension.

        Raises:
            EncodingError: If Pillow fails to write the file.
        """
        _, ext = plan_image_export(None, file_format, keep_alpha)
        path = path_base + ext
        data = to_uint8(to_rgba(pixels))
        try:
            if ext == ".png" and keep_alpha:
                img = Image.fromarray(data)
            else:
                img = Image.fromarray(np.ascontiguousarray(data[:, :, :3]))
            if ext == ".jpg":
                img.save(path, format="JPEG", quality=int(quality))
            else:
                img.save(path, format="PNG")
        except (OSError, ValueError) as e:
            raise EncodingError(f"Failed to encode {path}: {e}") from e
        logger.debug("Encoded %s (%dx%d)", path, data.shape[1], data.shape[0])
        return ext

    def copy(self, source_path: str, path_base: str) -> str:
        """Copy *source_path* next to ``path_base`` keeping its extension."""
        ext = os.path.splitext(source_path)[1].lower()
        path = path_base + ext
        try:
            if os.path.abspath(source_path) != os.path.abspath(path):
                shutil.copyfile(source_path, path)
        except OSError as e:
            raise EncodingError(f"Failed to copy {source_path} -> {path}: {e}") from e
        logger.debug("Copied %s -> %s", source_path, path)
        return ext
