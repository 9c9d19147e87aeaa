"""Skybox export: six face images, or a procedural sky rendered per face."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict

from asset_writer import export_pixels, resolve_generated
from scene_model import SKYBOX_FACES

if TYPE_CHECKING:
    from export_session import ExportSession

logger = logging.getLogger("janus_export.skybox")

# Rendered face image names
PROCEDURAL_FACE_NAMES: Dict[str, str] = {
    "front": "SkyBoxForward",
    "back": "SkyBoxBack",
    "left": "SkyBoxLeft",
    "right": "SkyBoxRight",
    "up": "SkyBoxUp",
    "down": "SkyBoxDown",
}


def register_skybox(session: "ExportSession") -> None:
    """Register the six face images and remember their ids on the session."""
    skybox = session.scene.skybox
    if not session.config.export_skybox or skybox is None:
        return
    if skybox.is_six_sided:
        for face in SKYBOX_FACES:
            session.skybox_ids[face] = session.registry.register_image(skybox.faces[face]).id
    elif skybox.sampler is not None:
        for face in SKYBOX_FACES:
            image = session.registry.register_named_image(PROCEDURAL_FACE_NAMES[face])
            session.skybox_ids[face] = image.id
    else:
        logger.warning("Skybox has neither six faces nor a sampler; not exported")


def render_skybox(session: "ExportSession") -> None:
    """Render procedural faces through the baking service."""
    skybox = session.scene.skybox
    if not session.skybox_ids or skybox is None or skybox.is_six_sided:
        return
    resolution = session.config.skybox_resolution
    for face in SKYBOX_FACES:
        image = session.registry.get_image(session.skybox_ids[face])
        if image is None or image.resolved:
            continue
        if session.config.html_only:
            resolve_generated(session, image)
            continue
        pixels = session.baker.render_skybox_face(
            skybox.sampler, face, resolution, is_linear=session.scene.linear_color_space,
        )
        export_pixels(session, image, pixels)
    logger.info("Rendered procedural skybox at %dpx", resolution)
