"""
Load a scene description from JSON.

The exporter core never talks to a host engine directly; this loader is the
host for command-line runs.  Layout of a scene file::

    {
      "name": "Gallery",
      "linear_color_space": true,
      "images":    {"Brick": "textures/brick.png"},
      "materials": {"BrickMat": {"shader": "Standard",
                                 "properties": [{"name": "_MainTex", "type": "texture", "value": "Brick"},
                                                {"name": "_Color", "type": "color", "value": [1, 1, 1, 1]}],
                                 "texture_scale": [1, 1], "texture_offset": [0, 0]}},
      "meshes":    {"Cube": {"vertices": [[...]], "normals": [[...]], "triangles": [...],
                             "uv0": [[...]], "uv1": [[...]], "submeshes": [[...]]}},
      "lightmaps_dir": "Lightmaps",
      "skybox": {"faces": {"front": "SkyFront", ...}}
             or {"gradient": {"top": [r, g, b], "horizon": [r, g, b], "bottom": [r, g, b]}},
      "nodes": [{"name": "Wall", "position": [0, 0, 0], "rotation": [0, 0, 0, 1], "scale": [1, 1, 1],
                 "active": true, "static": true,
                 "renderer": {"mesh": "Cube", "materials": ["BrickMat"],
                              "lightmap_index": 0, "lightmap_scale_offset": [0.5, 0.5, 0, 0]},
                 "collider": true,
                 "link": {"url": "https://...", "title": "..."},
                 "probe": {"image": "Brick", "resolution": 128},
                 "children": [...]}]
    }

Relative paths resolve against the scene file's directory.  Lightmap files
follow the ``Lightmap-<index>_comp_light.<ext>`` naming convention.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from export_errors import ConfigurationError
from scene_model import (
    Collidable,
    LinkPortal,
    Material,
    MeshData,
    ReflectionProbe,
    Renderable,
    Scene,
    SceneNode,
    ShaderProperty,
    Skybox,
    SourceImage,
    Transform,
    PROPERTY_TEXTURE,
    gradient_sky,
)

logger = logging.getLogger("janus_export.loader")

LIGHTMAP_FILE_RE = re.compile(r"^Lightmap-(\d+)_comp_light\.(\w+)$", re.IGNORECASE)

# Extension preference when several files exist for one lightmap index, HDR first
_LIGHTMAP_PREFERENCE = (".exr", ".tif", ".tiff", ".png")


def find_lightmaps(directory: str, source_only: bool = False) -> Dict[int, SourceImage]:
    """Map lightmap index -> source file found in *directory*.

    With ``source_only`` only the HDR ``.exr`` originals are accepted.
    """
    if not directory or not os.path.isdir(directory):
        return {}
    order = (".exr",) if source_only else _LIGHTMAP_PREFERENCE
    candidates: Dict[int, List[str]] = {}
    for name in sorted(os.listdir(directory)):
        m = LIGHTMAP_FILE_RE.match(name)
        if m and os.path.splitext(name)[1].lower() in order:
            candidates.setdefault(int(m.group(1)), []).append(name)

    def rank(filename: str) -> int:
        return order.index(os.path.splitext(filename)[1].lower())

    lightmaps: Dict[int, SourceImage] = {}
    for index, names in sorted(candidates.items()):
        best = min(names, key=rank)
        lightmaps[index] = SourceImage(name=f"Lightmap-{index}_comp_light", path=os.path.join(directory, best))
    logger.debug("Found %d lightmaps in %s", len(lightmaps), directory)
    return lightmaps


class _SceneBuilder:
    def __init__(self, data: Dict[str, Any], base_dir: str, prefer_source_lightmaps: bool):
        self.data = data
        self.base_dir = base_dir
        self.prefer_source_lightmaps = prefer_source_lightmaps
        self.images: Dict[str, SourceImage] = {}
        self.materials: Dict[str, Material] = {}
        self.meshes: Dict[str, MeshData] = {}

    def _path(self, path: str) -> str:
        return path if os.path.isabs(path) else os.path.normpath(os.path.join(self.base_dir, path))

    def build(self) -> Scene:
        for name, entry in (self.data.get("images") or {}).items():
            if isinstance(entry, str):
                entry = {"path": entry}
            self.images[name] = SourceImage(
                name=name,
                path=self._path(entry["path"]),
                alpha_is_transparency=bool(entry.get("alpha_is_transparency", False)),
            )
        for name, entry in (self.data.get("materials") or {}).items():
            self.materials[name] = self._material(name, entry)
        for name, entry in (self.data.get("meshes") or {}).items():
            self.meshes[name] = MeshData(
                name=name,
                vertices=entry.get("vertices"),
                normals=entry.get("normals"),
                triangles=entry.get("triangles"),
                uv0=entry.get("uv0"),
                uv1=entry.get("uv1"),
                submeshes=entry.get("submeshes"),
            )

        lightmaps_dir = self.data.get("lightmaps_dir")
        lightmaps = find_lightmaps(self._path(lightmaps_dir), self.prefer_source_lightmaps) if lightmaps_dir else {}

        return Scene(
            name=str(self.data.get("name", "Scene")),
            roots=[self._node(n) for n in self.data.get("nodes") or []],
            skybox=self._skybox(self.data.get("skybox")),
            lightmaps=lightmaps,
            linear_color_space=bool(self.data.get("linear_color_space", True)),
        )

    def _image(self, name: Optional[str], owner: str) -> Optional[SourceImage]:
        if name is None:
            return None
        image = self.images.get(name)
        if image is None:
            logger.warning("%s references unknown image %r", owner, name)
        return image

    def _material(self, name: str, entry: Dict[str, Any]) -> Material:
        props = []
        for p in entry.get("properties") or []:
            kind = p.get("type", "float")
            value = p.get("value")
            if kind == PROPERTY_TEXTURE:
                value = self._image(value, f"Material {name}")
            props.append(ShaderProperty(name=p["name"], kind=kind, value=value))
        return Material(
            name=name,
            shader=entry.get("shader", "Standard"),
            properties=props,
            texture_scale=tuple(entry.get("texture_scale", (1.0, 1.0))),
            texture_offset=tuple(entry.get("texture_offset", (0.0, 0.0))),
        )

    def _node(self, entry: Dict[str, Any]) -> SceneNode:
        name = entry.get("name", "Node")
        caps: List[Any] = []

        renderer = entry.get("renderer")
        if renderer:
            mesh = self.meshes.get(renderer.get("mesh"))
            if renderer.get("mesh") is not None and mesh is None:
                logger.warning("Node %s references unknown mesh %r", name, renderer.get("mesh"))
            materials = []
            for mat_name in renderer.get("materials") or []:
                material = self.materials.get(mat_name)
                if material is None:
                    logger.warning("Node %s references unknown material %r", name, mat_name)
                materials.append(material)
            caps.append(Renderable(
                mesh=mesh,
                materials=materials,
                lightmap_index=int(renderer.get("lightmap_index", -1)),
                lightmap_scale_offset=tuple(renderer.get("lightmap_scale_offset", (1.0, 1.0, 0.0, 0.0))),
            ))
        if entry.get("collider"):
            caps.append(Collidable())
        probe = entry.get("probe")
        if probe:
            caps.append(ReflectionProbe(
                texture=self._image(probe.get("image"), f"Probe {name}"),
                resolution=int(probe.get("resolution", 128)),
            ))
        link = entry.get("link")
        if link:
            caps.append(LinkPortal(
                url=link.get("url", LinkPortal.url),
                title=link.get("title", LinkPortal.title),
                color=tuple(link.get("color", (1.0, 1.0, 1.0, 1.0))),
                draw_glow=bool(link.get("draw_glow", True)),
                draw_text=bool(link.get("draw_text", True)),
                auto_load=bool(link.get("auto_load", False)),
                circular=bool(link.get("circular", False)),
            ))

        return SceneNode(
            name=name,
            transform=Transform(
                position=tuple(entry.get("position", (0.0, 0.0, 0.0))),
                rotation=tuple(entry.get("rotation", (0.0, 0.0, 0.0, 1.0))),
                scale=tuple(entry.get("scale", (1.0, 1.0, 1.0))),
            ),
            children=[self._node(c) for c in entry.get("children") or []],
            capabilities=caps,
            active=bool(entry.get("active", True)),
            static=bool(entry.get("static", True)),
        )

    def _skybox(self, entry: Optional[Dict[str, Any]]) -> Optional[Skybox]:
        if not entry:
            return None
        if "gradient" in entry:
            g = entry["gradient"]
            return Skybox(sampler=gradient_sky(
                g.get("top", (0.3, 0.5, 0.9)),
                g.get("horizon", (0.8, 0.85, 0.9)),
                g.get("bottom", (0.3, 0.3, 0.3)),
            ))
        faces = {}
        for face, image_name in (entry.get("faces") or {}).items():
            image = self._image(image_name, "Skybox")
            if image is not None:
                faces[face] = image
        return Skybox(faces=faces)


def load_scene(path: str, prefer_source_lightmaps: bool = False) -> Scene:
    """Read a JSON scene description.

    Raises:
        ConfigurationError: If the file is missing or is not a valid scene.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read scene file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Scene file {path} must contain a JSON object")

    try:
        scene = _SceneBuilder(data, os.path.dirname(os.path.abspath(path)), prefer_source_lightmaps).build()
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Malformed scene file {path}: {e}") from e
    logger.info("Loaded scene %s: %d root nodes, %d lightmaps", scene.name, len(scene.roots), len(scene.lightmaps))
    return scene
