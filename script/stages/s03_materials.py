"""Stage 3: Materials -- lightmap image registration and material extraction.

Each room object first gets its lightmap images from the active lightmap
strategy, then (unless its diffuse was replaced by a bake) its diffuse
texture / colour / tiling from its primary material.  Skybox faces are
registered last.
"""
from __future__ import annotations

import logging
import os
import sys

logger = logging.getLogger("janus_export.s03")

_script_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from export_session import ExportSession
from material_extractor import MaterialExtractor
from skybox_export import register_skybox


def run(session: ExportSession) -> None:
    """Execute Stage 3."""
    config = session.config
    extractor = MaterialExtractor(session.registry, export_colors=config.export_material_colors)

    extracted = 0
    for ro in session.room_objects:
        session.strategy.register(session, ro)
        if ro.baked or not config.export_materials:
            continue
        material = ro.primary_material
        if material is None:
            continue
        extractor.apply(ro, material)
        extracted += 1

    register_skybox(session)
    logger.info(
        "Stage 3: %d materials extracted, %d images registered",
        extracted, len(session.registry.images),
    )
