"""Stage 6: Serialize -- write the FireBox room document."""
from __future__ import annotations

import logging
import os
import sys

logger = logging.getLogger("janus_export.s06")

_script_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from export_session import ExportSession
from scene_serializer import serialize


def run(session: ExportSession) -> None:
    """Execute Stage 6."""
    config = session.config
    session.document = serialize(
        session.registry.meshes,
        session.registry.images,
        session.room_objects,
        session.skybox_ids,
        session.far_plane_distance,
        config,
        links=session.links,
    )
    path = config.document_path or os.path.join(config.export_dir, config.document_name)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(session.document)
    logger.info("Stage 6: wrote %s", path)
