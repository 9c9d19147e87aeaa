"""
Scene serializer: build the FireBox HTML document.

Output is deterministic: assets in registration order, objects in room
object order, attributes in a fixed order, floats in a locale-independent
fixed-point form.
"""

from __future__ import annotations

import html
import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from asset_registry import AssetImage, AssetMesh
from export_config import EXPORTER_VERSION, PACKED_LIGHTMAP_MODES, ExportConfig
from scene_model import SKYBOX_FACES, Color, Transform
from scene_walker import LinkObject

if TYPE_CHECKING:
    from export_session import RoomObject

logger = logging.getLogger("janus_export.serializer")

Attribute = Tuple[str, str]


# ---------------------------------------------------------------------------
# Value formatting
# ---------------------------------------------------------------------------
def format_float(value: float) -> str:
    """Fixed-point, up to six decimals, trailing zeros trimmed (``2.0 -> "2"``)."""
    text = f"{float(value):.6f}".rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text


def format_vector(values: Iterable[float]) -> str:
    return " ".join(format_float(v) for v in values)


def format_color(color: Color) -> str:
    """``#f`` followed by uppercase ``RRGGBB``."""
    r, g, b = (int(np.clip(c, 0.0, 1.0) * 255) for c in color[:3])
    return f"#f{r:02X}{g:02X}{b:02X}"


def format_bool(value: bool) -> str:
    return "true" if value else "false"


def clamp_vector(values: Sequence[float], lo: float, hi: float) -> List[float]:
    return [min(max(float(v), lo), hi) for v in values]


def _attrs(pairs: Sequence[Attribute]) -> str:
    return " ".join(f'{name}="{html.escape(value, quote=True)}"' for name, value in pairs)


# ---------------------------------------------------------------------------
# Coordinate conversion
# ---------------------------------------------------------------------------
def convert_position(position: Sequence[float], uniform_scale: float) -> np.ndarray:
    """Scale the whole vector, then mirror X."""
    pos = np.asarray(position, dtype=np.float64) * uniform_scale
    pos[0] = -pos[0]
    return pos


def convert_direction(direction: Sequence[float]) -> np.ndarray:
    out = np.asarray(direction, dtype=np.float64).copy()
    out[0] = -out[0]
    return out


def transform_attributes(
    transform: Transform,
    uniform_scale: float,
    position: Optional[Sequence[float]] = None,
) -> List[Attribute]:
    """``pos``, optional ``cull_face``, ``scale``, ``xdir``, ``ydir``, ``zdir``."""
    pos = convert_position(transform.position if position is None else position, uniform_scale)
    scale = np.asarray(transform.scale, dtype=np.float64) * uniform_scale
    xdir, ydir, zdir = transform.basis()

    attrs: List[Attribute] = [("pos", format_vector(pos))]
    if (scale < 0).any():
        attrs.append(("cull_face", "front"))
    attrs.append(("scale", format_vector(scale)))
    attrs.append(("xdir", format_vector(convert_direction(xdir))))
    attrs.append(("ydir", format_vector(convert_direction(ydir))))
    attrs.append(("zdir", format_vector(convert_direction(zdir))))
    return attrs


# ---------------------------------------------------------------------------
# Elements
# ---------------------------------------------------------------------------
def object_attributes(
    room_object: "RoomObject",
    images: Dict[str, AssetImage],
    config: ExportConfig,
) -> List[Attribute]:
    attrs: List[Attribute] = [("id", room_object.id), ("lighting", "true")]

    if room_object.image_id and room_object.image_id in images:
        attrs.append(("image_id", room_object.image_id))

    if room_object.lightmap_id and room_object.lightmap_id in images:
        attrs.append(("lmap_id", room_object.lightmap_id))
        if room_object.lightmap_scale_offset is not None and config.lightmap_mode in PACKED_LIGHTMAP_MODES:
            lo, hi = config.lmap_scale_range
            attrs.append(("lmap_sca", format_vector(clamp_vector(room_object.lightmap_scale_offset, lo, hi))))

    if room_object.tiling is not None:
        attrs.append(("tile", format_vector(room_object.tiling)))
    if room_object.has_collider:
        attrs.append(("collision_id", room_object.id))
    if room_object.color is not None:
        attrs.append(("col", format_color(room_object.color)))

    attrs.extend(transform_attributes(room_object.transform, config.uniform_scale))
    return attrs


def link_attributes(link: LinkObject, uniform_scale: float) -> List[Attribute]:
    attrs: List[Attribute] = [("url", link.url), ("title", link.title)]
    attrs.extend(transform_attributes(link.transform, uniform_scale, position=link.janus_position()))
    attrs.append(("col", format_color(link.color)))
    attrs.append(("draw_glow", format_bool(link.draw_glow)))
    attrs.append(("draw_text", format_bool(link.draw_text)))
    attrs.append(("auto_load", format_bool(link.auto_load)))
    attrs.append(("circular", format_bool(link.circular)))
    return attrs


def serialize(
    meshes: Sequence[AssetMesh],
    images: Sequence[AssetImage],
    room_objects: Sequence["RoomObject"],
    skybox_ids: Dict[str, str],
    far_plane_distance: float,
    config: ExportConfig,
    links: Sequence[LinkObject] = (),
) -> str:
    """Return the complete HTML document."""
    resolved_meshes = [m for m in meshes if m.resolved]
    resolved_images = [i for i in images if i.resolved]
    mesh_ids = {m.id for m in resolved_meshes}
    image_index = {i.id: i for i in resolved_images}

    lines: List[str] = [
        "<html>",
        "\t<head>",
        f"\t\t<title>{html.escape(config.title)} v{EXPORTER_VERSION}</title>",
        "\t</head>",
        "\t<body>",
        "\t\t<FireBoxRoom>",
        "\t\t\t<Assets>",
    ]
    for mesh in resolved_meshes:
        lines.append(f"\t\t\t\t<AssetObject {_attrs([('id', mesh.id), ('src', mesh.src)])} />")
    for image in resolved_images:
        lines.append(f"\t\t\t\t<AssetImage {_attrs([('id', image.id), ('src', image.src)])} />")
    lines.append("\t\t\t</Assets>")

    room: List[Attribute] = [("far_dist", format_float(far_plane_distance))]
    if config.export_skybox and all(skybox_ids.get(face) in image_index for face in SKYBOX_FACES):
        room.extend((f"skybox_{face}_id", skybox_ids[face]) for face in SKYBOX_FACES)
    lines.append(f"\t\t\t<Room {_attrs(room)}>")

    written = 0
    for ro in room_objects:
        if ro.id not in mesh_ids:
            logger.debug("Object %s dropped: mesh %s was not exported", ro.name, ro.id)
            continue
        lines.append(f"\t\t\t\t<Object {_attrs(object_attributes(ro, image_index, config))} />")
        written += 1
    for link in links:
        lines.append(f"\t\t\t\t<Link {_attrs(link_attributes(link, config.uniform_scale))} />")

    lines.extend([
        "\t\t\t</Room>",
        "\t\t</FireBoxRoom>",
        "\t</body>",
        "</html>",
    ])
    logger.info(
        "Serialized %d meshes, %d images, %d objects, %d links",
        len(resolved_meshes), len(resolved_images), written, len(links),
    )
    return "\n".join(lines) + "\n"
