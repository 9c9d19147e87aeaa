"""
Asset registry: identity-keyed stores for exported images and meshes.

Every stage that needs an output asset goes through the registry so each
distinct source is written once and gets one stable id.  Registration order
is preserved and is the order assets appear in the serialized document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Tuple

import numpy as np

from scene_model import Color, SourceImage

logger = logging.getLogger("janus_export.registry")


@dataclass(eq=False)
class AssetImage:
    """An image declared in the document.

    ``src`` starts as the bare output name; ``resolve()`` appends the file
    extension once the image has a known on-disk format.  Unresolved images
    are left out of the document.
    """

    id: str
    src: str
    source: Optional[SourceImage] = None
    is_generated: bool = False
    export_alpha: bool = False
    resolved: bool = False

    def resolve(self, extension: str) -> None:
        if self.resolved:
            return
        self.src += extension
        self.resolved = True


@dataclass(eq=False)
class AssetMesh:
    """A merged output mesh.  Geometry is filled in by the merge engine."""

    id: str
    src: str
    vertices: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    normals: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    triangles: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    submeshes: List[np.ndarray] = field(default_factory=list)
    uv0: Optional[np.ndarray] = None
    uv1: Optional[np.ndarray] = None
    resolved: bool = False

    def resolve(self, extension: str) -> None:
        if self.resolved:
            return
        self.src += extension
        self.resolved = True

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    def is_valid(self) -> bool:
        """True when the mesh has geometry and every index addresses a vertex and normal."""
        if len(self.vertices) == 0 or len(self.triangles) == 0:
            return False
        top = int(self.triangles.max())
        return top < len(self.vertices) and len(self.normals) >= top + 1


class AssetRegistry:
    """Ordered, deduplicating store of ``AssetImage`` and ``AssetMesh`` entries."""

    def __init__(self) -> None:
        self._images: List[AssetImage] = []
        self._images_by_id: Dict[str, AssetImage] = {}
        self._images_by_name: Dict[str, List[AssetImage]] = {}
        self._named_images: Dict[str, AssetImage] = {}
        self._meshes: List[AssetMesh] = []
        self._meshes_by_key: Dict[Hashable, AssetMesh] = {}
        self._mesh_ids: Dict[str, AssetMesh] = {}
        self._generated_colors: Dict[Tuple[int, int, int, int], AssetImage] = {}
        self._color_counter = 0

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    @property
    def images(self) -> List[AssetImage]:
        return list(self._images)

    def get_image(self, image_id: str) -> Optional[AssetImage]:
        return self._images_by_id.get(image_id)

    def _unique_image_id(self, base: str) -> str:
        if base not in self._images_by_id:
            return base
        k = 1
        while f"{base}_{k}" in self._images_by_id:
            k += 1
        return f"{base}_{k}"

    def _append_image(self, image: AssetImage) -> AssetImage:
        self._images.append(image)
        self._images_by_id[image.id] = image
        return image

    def register_image(self, source: SourceImage) -> AssetImage:
        """Return the asset for *source*, creating it on first sight.

        Identity is the source name first, then the source object itself: a
        second, different image that happens to share a name is registered
        under a disambiguated id.
        """
        same_name = self._images_by_name.get(source.name)
        if same_name:
            for image in same_name:
                if image.source is source:
                    return image
            logger.debug("Image name %r reused by a different source", source.name)

        image_id = self._unique_image_id(source.name)
        image = AssetImage(
            id=image_id,
            src=image_id,
            source=source,
            export_alpha=source.alpha_is_transparency,
        )
        self._images_by_name.setdefault(source.name, []).append(image)
        return self._append_image(image)

    def get_named_image(self, name: str) -> Optional[AssetImage]:
        return self._named_images.get(name)

    def register_named_image(self, name: str, source: Optional[SourceImage] = None) -> AssetImage:
        """Get-or-create a pipeline-produced image (lightmaps, bakes, skybox faces).

        Lookup is by *name* among pipeline images only.  When a source image
        already holds that id the new image gets a suffixed one, so the two
        never share a file.
        """
        existing = self._named_images.get(name)
        if existing is not None:
            return existing
        image_id = self._unique_image_id(name)
        if image_id != name:
            logger.warning("Image id %r already taken; pipeline image registered as %r", name, image_id)
        image = AssetImage(id=image_id, src=image_id, source=source, is_generated=True)
        self._named_images[name] = image
        return self._append_image(image)

    def register_generated_color_image(self, color: Color) -> AssetImage:
        """Synthesize a flat 2x2 RGB image for a solid-colour material.

        The same colour (at 8-bit precision) maps to the same image.
        """
        key = tuple(int(round(np.clip(c, 0.0, 1.0) * 255)) for c in color[:4])
        key = key + (255,) * (4 - len(key))
        existing = self._generated_colors.get(key)
        if existing is not None:
            return existing

        name = f"GeneratedColor{self._color_counter}"
        self._color_counter += 1
        pixels = np.empty((2, 2, 4), dtype=np.float32)
        pixels[:, :, :3] = np.asarray(key[:3], dtype=np.float32) / 255.0
        pixels[:, :, 3] = 1.0
        source = SourceImage(name=name, pixels=pixels)

        image_id = self._unique_image_id(name)
        image = AssetImage(id=image_id, src=image_id, source=source, is_generated=True)
        self._images_by_name.setdefault(name, []).append(image)
        self._generated_colors[key] = image
        return self._append_image(image)

    # ------------------------------------------------------------------
    # Meshes
    # ------------------------------------------------------------------
    @property
    def meshes(self) -> List[AssetMesh]:
        return list(self._meshes)

    def get_mesh(self, key: Hashable) -> Optional[AssetMesh]:
        return self._meshes_by_key.get(key)

    def register_mesh(self, key: Hashable, mesh_id: str) -> AssetMesh:
        """Return the mesh registered under merge *key*, creating it if new.

        *mesh_id* is the preferred id; it is suffixed when already taken.
        """
        existing = self._meshes_by_key.get(key)
        if existing is not None:
            return existing
        unique = mesh_id
        k = 1
        while unique in self._mesh_ids:
            unique = f"{mesh_id}_{k}"
            k += 1
        mesh = AssetMesh(id=unique, src=unique)
        self._meshes.append(mesh)
        self._meshes_by_key[key] = mesh
        self._mesh_ids[unique] = mesh
        return mesh
