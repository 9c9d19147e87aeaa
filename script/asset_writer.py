"""
Write registered assets to the export directory.

Every function here honours ``html_only``: the file extension is still
resolved (it is a pure function of the source and the config) but no
encoder is called and nothing is written.  Encoder failures are logged and
leave the asset unresolved so the document never links a missing file.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

import numpy as np

from asset_registry import AssetImage, AssetMesh
from export_errors import EncodingError, SkippableAssetError
from image_encoder import ACTION_COPY, plan_image_export

if TYPE_CHECKING:
    from export_session import ExportSession

logger = logging.getLogger("janus_export.writer")


def output_base(session: "ExportSession", src: str) -> str:
    return os.path.join(session.config.export_dir, src)


def export_source_image(session: "ExportSession", image: AssetImage) -> bool:
    """Copy or re-encode a registered image backed by a source image."""
    if image.resolved:
        return True
    config = session.config
    source = image.source
    if source is None:
        logger.warning("Image %s has no source; skipped", image.id)
        return False

    action, ext = plan_image_export(
        source.path, config.texture_format, image.export_alpha, config.force_retranscode,
    )
    if config.html_only:
        image.resolve(ext)
        return True

    base = output_base(session, image.src)
    try:
        if action == ACTION_COPY:
            ext = session.image_encoder.copy(source.path, base)
        else:
            ext = session.image_encoder.encode(
                source.load_pixels(), base, config.texture_format,
                quality=config.texture_quality, keep_alpha=image.export_alpha,
            )
    except SkippableAssetError as e:
        logger.warning("Skipping image %s: %s", image.id, e)
        return False
    except EncodingError as e:
        logger.error("Image %s not exported: %s", image.id, e)
        return False
    image.resolve(ext)
    return True


def export_pixels(
    session: "ExportSession",
    image: AssetImage,
    pixels: np.ndarray,
    keep_alpha: bool = False,
) -> bool:
    """Encode a pipeline-produced pixel buffer for *image*."""
    if image.resolved:
        return True
    config = session.config
    try:
        ext = session.image_encoder.encode(
            pixels, output_base(session, image.src), config.texture_format,
            quality=config.texture_quality, keep_alpha=keep_alpha,
        )
    except EncodingError as e:
        logger.error("Image %s not exported: %s", image.id, e)
        return False
    image.resolve(ext)
    return True


def resolve_generated(session: "ExportSession", image: AssetImage, keep_alpha: bool = False) -> None:
    """html-only path for pipeline-produced images."""
    _, ext = plan_image_export(None, session.config.texture_format, keep_alpha)
    image.resolve(ext)


def export_mesh(session: "ExportSession", mesh: AssetMesh, swap_uv: bool = False) -> bool:
    """Write one merged mesh, or just resolve its extension in html-only mode."""
    if mesh.resolved:
        return True
    if not mesh.is_valid():
        logger.warning("Mesh %s is invalid or empty; excluded", mesh.id)
        return False
    if session.config.html_only:
        mesh.resolve(session.mesh_encoder.extension)
        return True
    try:
        ext = session.mesh_encoder.write(mesh, output_base(session, mesh.src), swap_uv=swap_uv)
    except EncodingError as e:
        logger.error("Mesh %s not exported: %s", mesh.id, e)
        return False
    mesh.resolve(ext)
    return True
