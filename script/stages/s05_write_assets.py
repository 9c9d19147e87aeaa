"""Stage 5: Write assets -- textures, procedural skybox faces and meshes.

Images produced by the lightmap stage are already resolved and are left
alone.  In html-only mode extensions are resolved but nothing is written.
"""
from __future__ import annotations

import logging
import os
import sys

logger = logging.getLogger("janus_export.s05")

_script_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from asset_writer import export_mesh, export_source_image
from export_session import ExportSession
from skybox_export import render_skybox


def run(session: ExportSession) -> None:
    """Execute Stage 5."""
    images = [i for i in session.registry.images if i.source is not None and not i.resolved]
    written = sum(1 for image in images if export_source_image(session, image))

    render_skybox(session)

    swap_uv = session.strategy.swap_mesh_uv
    meshes = session.registry.meshes
    mesh_count = sum(1 for mesh in meshes if export_mesh(session, mesh, swap_uv=swap_uv))

    mode = "resolved" if session.config.html_only else "written"
    logger.info(
        "Stage 5: %d/%d images and %d/%d meshes %s",
        written, len(images), mesh_count, len(meshes), mode,
    )
