"""Stage 1: Scene walk -- flatten the host scene into exportable objects.

Collects mesh instances, link portals and reflection probes, and derives the
room far plane from the scene bounds.
"""
from __future__ import annotations

import logging
import os
import sys

logger = logging.getLogger("janus_export.s01")

_script_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from export_session import ExportSession
from scene_walker import LinkExtractor, SceneWalker


def run(session: ExportSession) -> None:
    """Execute Stage 1."""
    config = session.config
    walker = SceneWalker(
        ignore_inactive=config.ignore_inactive,
        export_dynamic=config.export_dynamic,
        extractors=session.extractors,
    )
    session.objects = walker.traverse(session.scene.roots)
    session.probes = walker.probes
    session.far_plane_distance = walker.far_plane_distance
    session.links = [
        link
        for extractor in session.extractors
        if isinstance(extractor, LinkExtractor)
        for link in extractor.links
    ]

    if session.probes:
        logger.info("Found %d reflection probes (not part of the room markup)", len(session.probes))
    logger.info(
        "Stage 1: %d objects, %d links, far plane %.1f",
        len(session.objects), len(session.links), session.far_plane_distance,
    )
