"""
Lightmap pipeline: one strategy per lightmap mode.

A strategy is picked once per run (``create_strategy``) and is used in two
places:

- ``register(session, room_object)`` during the materials stage decides
  which images a room object references (lightmap atlas, per-object bake);
- ``process(session)`` during the lightmaps stage produces those images
  through the texture-baking service, or copies source files.

Modes:

``none``
    No lightmaps.
``baked_material``
    Diffuse and lightmap composited into one ``<name>_Baked`` image per
    object; the mesh is written with the lightmap UVs as its surface UVs.
``packed``
    One exposure-decoded ``Lightmap<N>`` image per atlas, shared by every
    object in it; per-object ``lmap_sca`` picks the atlas region.
``packed_source_exr``
    Like ``packed`` but the HDR source file is copied verbatim; the baking
    service is never used.
``unpacked``
    Lightmap contribution only, one ``<name>_Baked`` image per object, used
    as the object's ``lmap_id``.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Dict, List, Optional

import numpy as np

from asset_writer import export_pixels, output_base, resolve_generated
from export_config import (
    LIGHTMAP_BAKED_MATERIAL,
    LIGHTMAP_NONE,
    LIGHTMAP_PACKED,
    LIGHTMAP_PACKED_SOURCE_EXR,
    LIGHTMAP_UNPACKED,
)
from export_errors import ConfigurationError, EncodingError, SkippableAssetError
from material_extractor import find_diffuse, is_transparent_shader
from mesh_merge import remap_lightmap_uvs, validate_instance
from scene_model import WHITE, SourceImage, Vec4
from texture_baking import (
    SHADING_BAKED,
    SHADING_EXPOSURE,
    DrawCall,
    ShadingParams,
    full_target_quad,
)

if TYPE_CHECKING:
    from export_session import ExportSession, RoomObject

logger = logging.getLogger("janus_export.lightmaps")

MIN_BAKE_RESOLUTION = 16


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def object_bake_resolution(scale_offset: Vec4, max_resolution: int, atlas_space: bool = False) -> int:
    """Square bake size for one object's lightmap footprint.

    ``size = max((1-ox)*sx, (1-oy)*sy)`` and the result is
    ``clamp(next_pow2(int(max_resolution*size)), 16, max_resolution)``.
    Atlas-space objects cover the whole atlas.
    """
    if atlas_space:
        size = 1.0
    else:
        sx, sy, ox, oy = scale_offset
        size = max((1.0 - ox) * sx, (1.0 - oy) * sy)
    res = next_power_of_two(int(max_resolution * size))
    return min(max_resolution, max(res, MIN_BAKE_RESOLUTION))


def lightmap_groups(room_objects: List["RoomObject"]) -> Dict[int, List["RoomObject"]]:
    """Lightmapped room objects by lightmap index, in first-seen order."""
    groups: Dict[int, List["RoomObject"]] = OrderedDict()
    for ro in room_objects:
        if ro.lightmap_index >= 0:
            groups.setdefault(ro.lightmap_index, []).append(ro)
    return groups


def lightmap_source(session: "ExportSession", index: int) -> SourceImage:
    source = session.scene.lightmaps.get(index)
    if source is None:
        raise SkippableAssetError(f"No lightmap source for index {index} (Lightmap-{index}_comp_light)")
    return source


def baked_image_id(room_object: "RoomObject") -> str:
    return f"{room_object.name}_Baked"


def atlas_image_id(index: int) -> str:
    return f"Lightmap{index}"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------
class LightmapStrategy:
    """Mode ``none``: nothing to register or produce."""

    mode = LIGHTMAP_NONE
    # mesh keeps its lightmap UV channel
    uses_lightmap_uvs = False
    # mesh encoder writes the lightmap UVs as the surface channel
    swap_mesh_uv = False
    # Object elements carry lmap_sca
    emits_lightmap_scale = False

    def register(self, session: "ExportSession", room_object: "RoomObject") -> None:
        pass

    def process(self, session: "ExportSession") -> None:
        pass


class PackedStrategy(LightmapStrategy):
    mode = LIGHTMAP_PACKED
    uses_lightmap_uvs = True
    emits_lightmap_scale = True

    def register(self, session: "ExportSession", room_object: "RoomObject") -> None:
        if room_object.lightmap_index < 0:
            return
        image = session.registry.register_named_image(atlas_image_id(room_object.lightmap_index))
        room_object.lightmap_id = image.id
        if not room_object.atlas_space and room_object.members:
            room_object.lightmap_scale_offset = room_object.members[0].lightmap_scale_offset

    def process(self, session: "ExportSession") -> None:
        config = session.config
        for index in lightmap_groups(session.room_objects):
            image = session.registry.get_named_image(atlas_image_id(index))
            if image is None or image.resolved:
                continue
            if config.html_only:
                resolve_generated(session, image)
                continue
            try:
                source = lightmap_source(session, index)
                hdr = source.load_pixels()
            except SkippableAssetError as e:
                logger.warning("Lightmap %d skipped: %s", index, e)
                continue

            height, width = hdr.shape[:2]
            shading = ShadingParams(
                mode=SHADING_EXPOSURE,
                lightmap=hdr,
                rel_fstops=config.lightmap_rel_fstops,
                is_linear=session.scene.linear_color_space,
            )
            with session.baker.render_target(width, height) as target:
                session.baker.draw(target, full_target_quad(shading))
                pixels = session.baker.read_back(target)
            if export_pixels(session, image, pixels):
                logger.info("Lightmap %d -> %s (%dx%d)", index, image.src, width, height)


class PackedSourceExrStrategy(PackedStrategy):
    mode = LIGHTMAP_PACKED_SOURCE_EXR

    def process(self, session: "ExportSession") -> None:
        for index in lightmap_groups(session.room_objects):
            image = session.registry.get_named_image(atlas_image_id(index))
            if image is None or image.resolved:
                continue
            source = session.scene.lightmaps.get(index)
            if source is None or not source.path:
                logger.warning("Lightmap %d skipped: no source file to copy", index)
                continue
            if session.config.html_only:
                image.resolve(source.extension or ".exr")
                continue
            try:
                ext = session.image_encoder.copy(source.path, output_base(session, image.src))
            except EncodingError as e:
                logger.error("Lightmap %d not copied: %s", index, e)
                continue
            image.resolve(ext)
            logger.info("Lightmap %d copied -> %s", index, image.src)


class _PerObjectBakeStrategy(LightmapStrategy):
    """Shared machinery of the two per-object bake modes."""

    uses_lightmap_uvs = True

    def max_resolution(self, session: "ExportSession", source: SourceImage) -> int:
        return session.config.lightmap_max_resolution

    def process(self, session: "ExportSession") -> None:
        config = session.config
        for index, room_objects in lightmap_groups(session.room_objects).items():
            pending = [ro for ro in room_objects if not self._image(session, ro).resolved]
            if not pending:
                continue
            if config.html_only:
                for ro in pending:
                    resolve_generated(session, self._image(session, ro), keep_alpha=ro.is_transparent)
                continue
            try:
                source = lightmap_source(session, index)
                hdr = source.load_pixels()
            except SkippableAssetError as e:
                logger.warning("Lightmap %d skipped: %s", index, e)
                continue

            max_res = self.max_resolution(session, source)
            for ro in pending:
                self._bake_object(session, ro, hdr, max_res)

    def _image(self, session: "ExportSession", room_object: "RoomObject"):
        return session.registry.register_named_image(baked_image_id(room_object))

    def _bake_object(self, session: "ExportSession", ro: "RoomObject", hdr: np.ndarray, max_res: int) -> None:
        config = session.config
        scale_offset = ro.members[0].lightmap_scale_offset if ro.members else (1.0, 1.0, 0.0, 0.0)
        res = object_bake_resolution(scale_offset, max_res, atlas_space=ro.atlas_space)

        calls = []
        for member in ro.members:
            reason = validate_instance(member.mesh)
            if reason is not None:
                logger.warning("Bake of %s skips %s: %s", ro.name, member.name, reason)
                continue
            uv1 = member.mesh.lightmap_uvs()
            if uv1 is None:
                logger.warning("Bake of %s skips %s: no lightmap UVs", ro.name, member.name)
                continue
            sample_uvs = remap_lightmap_uvs(uv1, member.lightmap_scale_offset)
            positions = sample_uvs if ro.atlas_space else uv1
            calls.extend(self._draw_calls(session, member, positions, sample_uvs, hdr))

        image = self._image(session, ro)
        with session.baker.render_target(res, res) as target:
            for call in calls:
                session.baker.draw(target, call)
            pixels = session.baker.read_back(target)
        if export_pixels(session, image, pixels, keep_alpha=ro.is_transparent):
            logger.info("Baked %s -> %s (%dx%d)", ro.name, image.src, res, res)

    def _draw_calls(self, session, member, positions, sample_uvs, hdr) -> List[DrawCall]:
        raise NotImplementedError


class BakedMaterialStrategy(_PerObjectBakeStrategy):
    mode = LIGHTMAP_BAKED_MATERIAL
    swap_mesh_uv = True

    def register(self, session: "ExportSession", room_object: "RoomObject") -> None:
        if room_object.lightmap_index < 0:
            return
        image = self._image(session, room_object)
        room_object.image_id = image.id
        room_object.baked = True
        material = room_object.primary_material
        room_object.is_transparent = material is not None and is_transparent_shader(material.shader)
        image.export_alpha = room_object.is_transparent

    def max_resolution(self, session: "ExportSession", source: SourceImage) -> int:
        width, _ = source.size
        return min(session.config.lightmap_max_resolution, width)

    def _draw_calls(self, session, member, positions, sample_uvs, hdr) -> List[DrawCall]:
        calls = []
        for slot, triangles in enumerate(member.mesh.submeshes):
            if len(triangles) == 0:
                continue
            material = member.materials[slot] if slot < len(member.materials) else None
            texture: Optional[SourceImage] = None
            color = WHITE
            tiling = None
            if material is not None:
                texture, found_color = find_diffuse(material)
                color = found_color or WHITE
                tiling = (*material.texture_scale, *material.texture_offset)
            diffuse = None
            if texture is not None:
                try:
                    diffuse = texture.load_pixels()
                except SkippableAssetError as e:
                    logger.warning("Baking %s without its texture: %s", member.name, e)
            shading = ShadingParams(
                mode=SHADING_BAKED,
                lightmap=hdr,
                diffuse_texture=diffuse,
                diffuse_color=color,
                tiling=tiling,
                rel_fstops=session.config.lightmap_rel_fstops,
                is_linear=session.scene.linear_color_space,
            )
            calls.append(DrawCall(
                positions=positions,
                triangles=triangles,
                shading=shading,
                lightmap_uvs=sample_uvs,
                surface_uvs=member.mesh.uv0,
            ))
        return calls


class UnpackedStrategy(_PerObjectBakeStrategy):
    mode = LIGHTMAP_UNPACKED

    def register(self, session: "ExportSession", room_object: "RoomObject") -> None:
        if room_object.lightmap_index < 0:
            return
        room_object.lightmap_id = self._image(session, room_object).id

    def _draw_calls(self, session, member, positions, sample_uvs, hdr) -> List[DrawCall]:
        shading = ShadingParams(
            mode=SHADING_EXPOSURE,
            lightmap=hdr,
            rel_fstops=session.config.lightmap_rel_fstops,
            is_linear=session.scene.linear_color_space,
        )
        return [DrawCall(
            positions=positions,
            triangles=member.mesh.triangles,
            shading=shading,
            lightmap_uvs=sample_uvs,
        )]


STRATEGIES = {
    LIGHTMAP_NONE: LightmapStrategy,
    LIGHTMAP_BAKED_MATERIAL: BakedMaterialStrategy,
    LIGHTMAP_PACKED: PackedStrategy,
    LIGHTMAP_PACKED_SOURCE_EXR: PackedSourceExrStrategy,
    LIGHTMAP_UNPACKED: UnpackedStrategy,
}


def create_strategy(mode: str) -> LightmapStrategy:
    cls = STRATEGIES.get(mode)
    if cls is None:
        raise ConfigurationError(f"Unknown lightmap mode {mode!r}. Available: {sorted(STRATEGIES)}")
    return cls()
