"""
Blender headless scene export -- JanusVR FireBox room.

Reads the open .blend scene into the exporter's scene model and runs the
export pipeline on it.

Usage::

    blender --background gallery.blend --python blender_scene_export.py -- \\
        --export-dir output/gallery \\
        --lightmaps-dir //Lightmaps \\
        --lightmap-mode packed

Per-object custom properties understood:

    janus_lightmap_index         int, index of the object's lightmap atlas
    janus_lightmap_scale_offset  4 floats, atlas region (sx, sy, ox, oy)
    janus_collider               bool, export a collision_id
    janus_link_url               string, export the object as a portal
    janus_link_title             string, portal title
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Dict, List, Optional

import numpy as np

# ---------------------------------------------------------------------------
# sys.path setup
# ---------------------------------------------------------------------------
_this_dir = os.path.dirname(os.path.realpath(__file__))
if _this_dir not in sys.path:
    sys.path.insert(0, _this_dir)

_script_dir = os.path.join(os.path.dirname(_this_dir), "script")
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

import bpy  # type: ignore[import-not-found]

from blender_coords import convert_transform, mesh_from_corners
from export_config import LIGHTMAP_MODES, LIGHTMAP_PACKED_SOURCE_EXR, MERGE_POLICIES, ExportConfig
from janus_export import export_scene
from scene_loader import find_lightmaps
from scene_model import (
    PROPERTY_COLOR,
    PROPERTY_TEXTURE,
    Collidable,
    LinkPortal,
    Material,
    MeshData,
    Renderable,
    Scene,
    SceneNode,
    ShaderProperty,
    Skybox,
    SourceImage,
    gradient_sky,
)

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("janus_export.blender")


# ===================================================================
# Images / materials
# ===================================================================

def _source_image(image: "bpy.types.Image", cache: Dict[str, SourceImage]) -> Optional[SourceImage]:
    if image.name in cache:
        return cache[image.name]
    path = bpy.path.abspath(image.filepath) if image.filepath else ""
    if path and os.path.isfile(path):
        source = SourceImage(name=os.path.splitext(image.name)[0], path=path)
    elif image.size[0] > 0 and image.size[1] > 0:
        # packed or generated: take the pixel buffer
        width, height = image.size
        pixels = np.asarray(image.pixels[:], dtype=np.float32).reshape(height, width, image.channels)
        source = SourceImage(name=os.path.splitext(image.name)[0], pixels=pixels[::-1])
    else:
        log.warning("Image %s has no file and no pixels; ignored", image.name)
        return None
    source.alpha_is_transparency = image.alpha_mode != "NONE" and image.channels == 4
    cache[image.name] = source
    return source


def _base_color_input(mat: "bpy.types.Material"):
    if not mat.use_nodes or mat.node_tree is None:
        return None
    for node in mat.node_tree.nodes:
        if node.type == "BSDF_PRINCIPLED":
            return node.inputs.get("Base Color")
    return None


def convert_material(mat: "bpy.types.Material", images: Dict[str, SourceImage]) -> Material:
    """Principled BSDF base colour -> ``_MainTex`` / ``_Color`` properties."""
    props: List[ShaderProperty] = []
    color = tuple(mat.diffuse_color)
    base = _base_color_input(mat)
    if base is not None:
        if base.is_linked:
            node = base.links[0].from_node
            if node.type == "TEX_IMAGE" and node.image is not None:
                source = _source_image(node.image, images)
                if source is not None:
                    props.append(ShaderProperty("_MainTex", PROPERTY_TEXTURE, source))
        else:
            color = tuple(base.default_value)
    props.append(ShaderProperty("_Color", PROPERTY_COLOR, color))

    blend = getattr(mat, "blend_method", "OPAQUE")
    shader = "Transparent/Diffuse" if blend == "BLEND" else "Standard"
    return Material(name=mat.name, shader=shader, properties=props)


# ===================================================================
# Meshes / nodes
# ===================================================================

def convert_mesh(obj: "bpy.types.Object") -> Optional[MeshData]:
    """Evaluated mesh of *obj* (modifiers applied), one vertex per triangle corner."""
    depsgraph = bpy.context.evaluated_depsgraph_get()
    evaluated = obj.evaluated_get(depsgraph)
    mesh = evaluated.to_mesh()
    try:
        mesh.calc_loop_triangles()
        tris = mesh.loop_triangles
        if len(tris) == 0:
            return None

        loops = np.empty(len(tris) * 3, dtype=np.int64)
        tris.foreach_get("loops", loops)
        materials = np.empty(len(tris), dtype=np.int64)
        tris.foreach_get("material_index", materials)
        normals = np.empty(len(tris) * 9, dtype=np.float64)
        tris.foreach_get("split_normals", normals)

        vertex_of_loop = np.empty(len(mesh.loops), dtype=np.int64)
        mesh.loops.foreach_get("vertex_index", vertex_of_loop)
        coords = np.empty(len(mesh.vertices) * 3, dtype=np.float64)
        mesh.vertices.foreach_get("co", coords)
        positions = coords.reshape(-1, 3)[vertex_of_loop[loops]]

        uv_sets = []
        for layer in list(mesh.uv_layers)[:2]:
            uv = np.empty(len(mesh.loops) * 2, dtype=np.float64)
            layer.data.foreach_get("uv", uv)
            uv_sets.append(uv.reshape(-1, 2)[loops])

        return mesh_from_corners(
            obj.data.name,
            positions,
            normals.reshape(-1, 3),
            materials,
            len(obj.material_slots),
            corner_uv0=uv_sets[0] if uv_sets else None,
            corner_uv1=uv_sets[1] if len(uv_sets) > 1 else None,
        )
    finally:
        evaluated.to_mesh_clear()


def convert_object(
    obj: "bpy.types.Object",
    meshes: Dict[str, MeshData],
    materials: Dict[str, Material],
    images: Dict[str, SourceImage],
) -> SceneNode:
    loc, rot, scale = obj.matrix_local.decompose()
    caps = []

    url = obj.get("janus_link_url")
    if url:
        caps.append(LinkPortal(url=str(url), title=str(obj.get("janus_link_title", LinkPortal.title))))
    elif obj.type == "MESH":
        # shared mesh data -> shared MeshData (and one exported mesh)
        key = obj.data.name if not obj.modifiers else obj.name
        if key not in meshes:
            meshes[key] = convert_mesh(obj)
        mats = []
        for slot in obj.material_slots:
            if slot.material is None:
                mats.append(None)
                continue
            if slot.material.name not in materials:
                materials[slot.material.name] = convert_material(slot.material, images)
            mats.append(materials[slot.material.name])
        caps.append(Renderable(
            mesh=meshes[key],
            materials=mats,
            lightmap_index=int(obj.get("janus_lightmap_index", -1)),
            lightmap_scale_offset=tuple(obj.get("janus_lightmap_scale_offset", (1.0, 1.0, 0.0, 0.0))),
        ))
        if obj.get("janus_collider", False):
            caps.append(Collidable())

    return SceneNode(
        name=obj.name,
        transform=convert_transform(loc, rot, scale),
        children=[convert_object(c, meshes, materials, images) for c in obj.children],
        capabilities=caps,
        active=not obj.hide_get() and not obj.hide_render,
        static=True,
    )


def collect_scene(lightmaps_dir: str = "", prefer_source_lightmaps: bool = False) -> Scene:
    """Build a ``Scene`` from the active Blender scene."""
    bl_scene = bpy.context.scene
    meshes: Dict[str, MeshData] = {}
    materials: Dict[str, Material] = {}
    images: Dict[str, SourceImage] = {}

    roots = [
        convert_object(obj, meshes, materials, images)
        for obj in bl_scene.objects
        if obj.parent is None
    ]

    skybox = None
    world = bl_scene.world
    if world is not None:
        c = tuple(world.color)
        skybox = Skybox(sampler=gradient_sky(c, c, c))

    lightmaps = {}
    if lightmaps_dir:
        lightmaps = find_lightmaps(bpy.path.abspath(lightmaps_dir), source_only=prefer_source_lightmaps)

    log.info("Collected %d root objects, %d meshes, %d materials", len(roots), len(meshes), len(materials))
    return Scene(
        name=bl_scene.name,
        roots=roots,
        skybox=skybox,
        lightmaps=lightmaps,
        linear_color_space=True,
    )


# ===================================================================
# Main
# ===================================================================

def _parse_args() -> argparse.Namespace:
    argv = sys.argv
    if "--" in argv:
        argv = argv[argv.index("--") + 1:]
    else:
        argv = []

    p = argparse.ArgumentParser(description="Export the open Blender scene as a JanusVR room")
    p.add_argument("--export-dir", required=True, help="Export directory")
    p.add_argument("--config", default="", help="JSON file with ExportConfig options")
    p.add_argument("--lightmaps-dir", default="", help="Directory holding Lightmap-<N>_comp_light.* files")
    p.add_argument("--lightmap-mode", choices=LIGHTMAP_MODES, default=None)
    p.add_argument("--merge-policy", choices=MERGE_POLICIES, default=None)
    p.add_argument("--html-only", action="store_true")
    return p.parse_args(argv)


def main() -> None:
    args = _parse_args()
    config = ExportConfig.from_json(args.config) if args.config else ExportConfig()
    config.export_dir = args.export_dir
    if args.lightmap_mode:
        config.lightmap_mode = args.lightmap_mode
    if args.merge_policy:
        config.merge_policy = args.merge_policy
    if args.html_only:
        config.html_only = True
    config.resolve()

    log.info("=" * 60)
    log.info("Janus scene export")
    log.info("  Blend:  %s", bpy.data.filepath)
    log.info("  Output: %s", config.export_dir)
    log.info("  Lightmap mode: %s", config.lightmap_mode)
    log.info("=" * 60)

    scene = collect_scene(
        args.lightmaps_dir,
        prefer_source_lightmaps=config.lightmap_mode == LIGHTMAP_PACKED_SOURCE_EXR,
    )
    session = export_scene(scene, config)
    log.info("Wrote %s (%d objects)", config.document_path, len(session.room_objects))


if __name__ == "__main__":
    main()
