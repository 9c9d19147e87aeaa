"""
Material extractor: pick a diffuse colour, texture, tiling and transparency
from a material's shader properties.

Only a fixed vocabulary of semantic property names is recognised.  Property
declaration order is authoritative: the first matching texture and the first
matching colour win.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, FrozenSet, Optional, Tuple

from asset_registry import AssetRegistry
from scene_model import PROPERTY_COLOR, PROPERTY_TEXTURE, Color, Material, SourceImage, Vec4

if TYPE_CHECKING:
    from export_session import RoomObject

logger = logging.getLogger("janus_export.materials")

MAIN_TEXTURE_NAMES: FrozenSet[str] = frozenset({"_maintex"})
MAIN_COLOR_NAMES: FrozenSet[str] = frozenset({"_color"})
TRANSPARENT_TOKENS: Tuple[str, ...] = ("transparent",)


@dataclass
class MaterialInfo:
    color: Optional[Color] = None
    texture: Optional[SourceImage] = None
    tiling: Optional[Vec4] = None
    is_transparent: bool = False


def is_transparent_shader(shader_name: str) -> bool:
    lowered = shader_name.lower()
    return any(token in lowered for token in TRANSPARENT_TOKENS)


def material_tiling(material: Material) -> Optional[Vec4]:
    """``(sx, sy, ox, oy)`` when the material's UVs are not the identity mapping."""
    sx, sy = material.texture_scale
    ox, oy = material.texture_offset
    if (sx, sy) == (1.0, 1.0) and (ox, oy) == (0.0, 0.0):
        return None
    return (float(sx), float(sy), float(ox), float(oy))


def find_diffuse(material: Material) -> Tuple[Optional[SourceImage], Optional[Color]]:
    """First main-texture and first main-colour property values, in declaration order."""
    texture: Optional[SourceImage] = None
    color: Optional[Color] = None
    for prop in material.properties:
        name = prop.name.lower()
        if prop.kind == PROPERTY_TEXTURE and name in MAIN_TEXTURE_NAMES:
            if texture is None and prop.value is not None:
                texture = prop.value
        elif prop.kind == PROPERTY_COLOR and name in MAIN_COLOR_NAMES:
            if color is None and prop.value is not None:
                color = _as_color(prop.value)
    return texture, color


class MaterialExtractor:
    """Reads materials and writes what it finds onto room objects.

    Args:
        registry: Registry that owns textures and generated colour images.
        export_colors: Synthesize a flat-colour image for untextured materials.
    """

    def __init__(self, registry: AssetRegistry, export_colors: bool = True):
        self.registry = registry
        self.export_colors = export_colors

    def extract(self, material: Material) -> MaterialInfo:
        texture, color = find_diffuse(material)
        info = MaterialInfo(
            color=color,
            texture=texture,
            tiling=material_tiling(material),
            is_transparent=is_transparent_shader(material.shader),
        )

        if info.texture is None and info.color is not None and self.export_colors:
            generated = self.registry.register_generated_color_image(info.color)
            info.texture = generated.source
            info.color = None

        return info

    def apply(self, room_object: "RoomObject", material: Material) -> MaterialInfo:
        """Extract *material* and record the result on *room_object*."""
        info = self.extract(material)
        room_object.is_transparent = info.is_transparent
        room_object.tiling = info.tiling
        room_object.color = info.color
        if info.texture is not None:
            image = self.registry.register_image(info.texture)
            if info.is_transparent:
                image.export_alpha = True
            room_object.image_id = image.id
        logger.debug(
            "Material %s -> image=%s color=%s tiling=%s",
            material.name, room_object.image_id, room_object.color, room_object.tiling,
        )
        return info


def _as_color(value) -> Color:
    comps = [float(c) for c in value]
    while len(comps) < 4:
        comps.append(1.0)
    return (comps[0], comps[1], comps[2], comps[3])
