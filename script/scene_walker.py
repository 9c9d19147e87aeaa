"""
Scene walker: flatten a host scene tree into exportable object records.

Traversal is depth-first, pre-order.  Inactive subtrees are pruned when the
``ignore_inactive`` policy is on.  Nodes claimed by an exclusive extractor
(e.g. a JanusVR link portal) are handed to that extractor instead of being
exported as meshes, but their children are still visited.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from scene_model import (
    Bounds,
    Collidable,
    Color,
    LinkPortal,
    Material,
    MeshData,
    ReflectionProbe,
    Renderable,
    SceneNode,
    Transform,
    Vec4,
)

logger = logging.getLogger("janus_export.walker")

MIN_FAR_PLANE = 500.0
FAR_PLANE_FACTOR = 1.3


@dataclass(eq=False)
class SceneObject:
    """One exportable mesh instance, frozen at traversal time."""

    node: SceneNode
    transform: Transform
    mesh: MeshData
    materials: List[Optional[Material]]
    lightmap_index: int = -1
    lightmap_scale_offset: Vec4 = (1.0, 1.0, 0.0, 0.0)
    has_collider: bool = False
    active: bool = True
    static: bool = True
    bounds: Optional[Bounds] = None

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def primary_material(self) -> Optional[Material]:
        return self.materials[0] if self.materials else None

    @property
    def has_lightmap(self) -> bool:
        return self.lightmap_index >= 0


@dataclass(eq=False)
class LinkObject:
    """A portal to another Janus room."""

    name: str
    transform: Transform
    url: str
    title: str
    color: Color
    draw_glow: bool
    draw_text: bool
    auto_load: bool
    circular: bool

    def janus_position(self) -> np.ndarray:
        """Janus places links by their base: lower the centre by half the height."""
        _, up, _ = self.transform.basis()
        half_height = self.transform.scale[1] / 2.0
        return np.asarray(self.transform.position, dtype=np.float64) - up * half_height


@dataclass(eq=False)
class ProbeRecord:
    name: str
    transform: Transform
    probe: ReflectionProbe


# ---------------------------------------------------------------------------
# Exclusive extractors
# ---------------------------------------------------------------------------
class ComponentExtractor:
    """Claims nodes that represent something other than plain geometry."""

    def claims(self, node: SceneNode) -> bool:
        raise NotImplementedError

    def extract(self, node: SceneNode, world: Transform) -> None:
        raise NotImplementedError


class LinkExtractor(ComponentExtractor):
    """Turns ``LinkPortal`` nodes into ``LinkObject`` records."""

    def __init__(self) -> None:
        self.links: List[LinkObject] = []

    def claims(self, node: SceneNode) -> bool:
        return node.find(LinkPortal) is not None

    def extract(self, node: SceneNode, world: Transform) -> None:
        portal = node.find(LinkPortal)
        self.links.append(LinkObject(
            name=node.name,
            transform=world,
            url=portal.url,
            title=portal.title,
            color=portal.color,
            draw_glow=portal.draw_glow,
            draw_text=portal.draw_text,
            auto_load=portal.auto_load,
            circular=portal.circular,
        ))
        logger.debug("Link %s -> %s", node.name, portal.url)


# ---------------------------------------------------------------------------
# Walker
# ---------------------------------------------------------------------------
def world_bounds(mesh: MeshData, transform: Transform) -> Optional[Bounds]:
    """Bounds of the mesh's transformed vertices."""
    if mesh.vertex_count == 0:
        return None
    return Bounds.from_points(transform.transform_points(mesh.vertices))


class SceneWalker:
    """Collects ``SceneObject`` records and the overall scene bounds."""

    def __init__(
        self,
        ignore_inactive: bool = True,
        export_dynamic: bool = False,
        extractors: Optional[Sequence[ComponentExtractor]] = None,
    ):
        self.ignore_inactive = ignore_inactive
        self.export_dynamic = export_dynamic
        self.extractors: List[ComponentExtractor] = list(extractors or [])
        self.objects: List[SceneObject] = []
        self.probes: List[ProbeRecord] = []
        self.bounds: Optional[Bounds] = None
        self.skipped = 0

    @property
    def far_plane_distance(self) -> float:
        if self.bounds is None:
            return MIN_FAR_PLANE
        return max(MIN_FAR_PLANE, self.bounds.diagonal * FAR_PLANE_FACTOR)

    def traverse(self, roots: Sequence[SceneNode]) -> List[SceneObject]:
        """Walk every root; return the objects found (in discovery order)."""
        for root in roots:
            self._visit(root, Transform.identity())
        logger.info(
            "Scene walk: %d objects, %d probes, %d skipped",
            len(self.objects), len(self.probes), self.skipped,
        )
        return self.objects

    def _visit(self, node: SceneNode, parent_world: Transform) -> None:
        if self.ignore_inactive and not node.active:
            logger.debug("Pruning inactive subtree %s", node.name)
            return

        world = parent_world.compose(node.transform)

        claimed = False
        for extractor in self.extractors:
            if extractor.claims(node):
                extractor.extract(node, world)
                claimed = True
                break

        if not claimed:
            self._inspect(node, world)

        for child in node.children:
            self._visit(child, world)

    def _inspect(self, node: SceneNode, world: Transform) -> None:
        probe = node.find(ReflectionProbe)
        if probe is not None:
            self.probes.append(ProbeRecord(name=node.name, transform=world, probe=probe))

        renderable = node.find(Renderable)
        if renderable is None:
            return
        if renderable.mesh is None or renderable.primary_material is None:
            logger.debug("Skipping %s: missing mesh or material", node.name)
            self.skipped += 1
            return
        if not node.static and not self.export_dynamic:
            logger.debug("Skipping dynamic object %s", node.name)
            self.skipped += 1
            return

        bounds = world_bounds(renderable.mesh, world)
        if bounds is not None:
            self.bounds = bounds if self.bounds is None else self.bounds.encapsulate(bounds)

        self.objects.append(SceneObject(
            node=node,
            transform=world,
            mesh=renderable.mesh,
            materials=list(renderable.materials),
            lightmap_index=renderable.lightmap_index,
            lightmap_scale_offset=tuple(renderable.lightmap_scale_offset),
            has_collider=node.find(Collidable) is not None,
            active=node.active,
            static=node.static,
            bounds=bounds,
        ))
