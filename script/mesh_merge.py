"""
Mesh merge engine.

Objects are grouped by a merge key chosen by the merge policy, then each
group's instances are concatenated into one ``AssetMesh``:

- vertices go through the instance's point transform, normals through its
  rotation only;
- triangle indices are offset by the number of vertices appended before the
  instance;
- the lightmap UV channel is re-projected into the instance's atlas region
  when the instance carries a lightmap scale/offset.

Policies:

``per_object``
    One group per distinct source mesh, kept in local space.  Every object
    using the mesh becomes its own room object with its own transform.
``per_lightmap``
    One world-space group per lightmap atlas.  Objects without a lightmap
    fall back to ``per_object``.
``per_material``
    One world-space group per primary material; when lightmapping is on the
    key is ``(material, lightmap index)`` so a group never spans two atlases.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from asset_registry import AssetMesh, AssetRegistry
from export_config import MERGE_PER_LIGHTMAP, MERGE_PER_MATERIAL, MERGE_PER_OBJECT
from scene_model import MeshData, Transform, Vec4
from scene_walker import SceneObject

logger = logging.getLogger("janus_export.merge")


@dataclass
class MergeInstance:
    """One contribution to a merged mesh."""

    mesh: MeshData
    transform: Transform
    lightmap_scale_offset: Optional[Vec4] = None
    name: str = ""


@dataclass(eq=False)
class MergeGroup:
    key: Hashable
    mesh_id: str
    world_space: bool
    instances: List[MergeInstance] = field(default_factory=list)
    members: List[SceneObject] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------
def remap_lightmap_uvs(uvs: np.ndarray, scale_offset: Vec4) -> np.ndarray:
    """``u' = u*sx + ox``, ``v' = v*sy + oy``."""
    sx, sy, ox, oy = scale_offset
    out = np.asarray(uvs, dtype=np.float64).reshape(-1, 2).copy()
    out[:, 0] = out[:, 0] * sx + ox
    out[:, 1] = out[:, 1] * sy + oy
    return out


def validate_instance(mesh: MeshData) -> Optional[str]:
    """Return a reason string when *mesh* cannot be merged, else None."""
    if mesh.vertex_count == 0:
        return "no vertices"
    if len(mesh.triangles) == 0:
        return "no triangles"
    top = int(mesh.triangles.max())
    if int(mesh.triangles.min()) < 0 or top >= mesh.vertex_count:
        return f"triangle index {top} out of range for {mesh.vertex_count} vertices"
    if len(mesh.normals) < top + 1:
        return f"{len(mesh.normals)} normals for max index {top}"
    return None


def build_group(
    instances: Sequence[MergeInstance],
    target: AssetMesh,
    synthesize_uv0: bool = True,
    lightmap_uvs: bool = True,
) -> AssetMesh:
    """Concatenate *instances* into *target* (in input order).

    Instances that fail validation are skipped with a warning; the rest of
    the group is still merged.
    """
    vertices: List[np.ndarray] = []
    normals: List[np.ndarray] = []
    uv0: List[np.ndarray] = []
    uv1: List[np.ndarray] = []
    submeshes: Dict[int, List[np.ndarray]] = {}
    have_uv0 = False
    have_uv1 = False
    offset = 0

    for inst in instances:
        mesh = inst.mesh
        reason = validate_instance(mesh)
        if reason is not None:
            logger.warning("Mesh %s (%s) rejected: %s", mesh.name, inst.name or "-", reason)
            continue

        count = mesh.vertex_count
        vertices.append(inst.transform.transform_points(mesh.vertices))
        inst_normals = mesh.normals[:count]
        if len(inst_normals) < count:
            # trailing vertices no triangle references
            inst_normals = np.vstack([inst_normals, np.zeros((count - len(inst_normals), 3))])
        normals.append(inst.transform.transform_directions(inst_normals))

        if mesh.uv0 is not None and len(mesh.uv0) >= count:
            uv0.append(mesh.uv0[:count])
            have_uv0 = True
        else:
            uv0.append(np.zeros((count, 2)))

        if lightmap_uvs:
            source = mesh.lightmap_uvs()
            if source is not None and len(source) >= count:
                lm = source[:count]
                if inst.lightmap_scale_offset is not None:
                    lm = remap_lightmap_uvs(lm, inst.lightmap_scale_offset)
                uv1.append(lm)
                have_uv1 = True
            else:
                uv1.append(np.zeros((count, 2)))

        for slot, sub in enumerate(mesh.submeshes):
            submeshes.setdefault(slot, []).append(sub + offset)
        offset += count

    if vertices:
        target.vertices = np.concatenate(vertices)
        target.normals = np.concatenate(normals)
        target.submeshes = [np.concatenate(submeshes[slot]) for slot in sorted(submeshes)]
        target.triangles = np.concatenate(target.submeshes)
        target.uv0 = np.concatenate(uv0) if (have_uv0 or synthesize_uv0) else None
        target.uv1 = np.concatenate(uv1) if (lightmap_uvs and have_uv1) else None
    else:
        logger.warning("Merge group %s produced no geometry", target.id)
    return target


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------
def _per_object_key(obj: SceneObject) -> Tuple[str, int]:
    return ("mesh", id(obj.mesh))


def group_key(obj: SceneObject, policy: str, lightmapping: bool) -> Tuple[Hashable, bool]:
    """Return ``(key, world_space)`` for *obj* under *policy*."""
    if policy == MERGE_PER_LIGHTMAP and obj.has_lightmap:
        return ("lightmap", obj.lightmap_index), True
    if policy == MERGE_PER_MATERIAL:
        material = obj.primary_material
        if lightmapping and obj.has_lightmap:
            return ("material", id(material), obj.lightmap_index), True
        return ("material", id(material), -1), True
    return _per_object_key(obj), False


def _group_mesh_id(obj: SceneObject, key: Hashable, counter: List[int]) -> str:
    kind = key[0]
    if kind == "lightmap":
        return f"Mesh{key[1]}"
    if kind == "material":
        base = obj.primary_material.name or "Material"
        return base if key[2] < 0 else f"{base}_L{key[2]}"
    if obj.mesh.name:
        return obj.mesh.name
    name = f"ExportedMesh{counter[0]}"
    counter[0] += 1
    return name


def group_objects(
    objects: Sequence[SceneObject],
    policy: str = MERGE_PER_OBJECT,
    lightmapping: bool = False,
) -> List[MergeGroup]:
    """Partition *objects* into merge groups, in discovery order."""
    groups: Dict[Hashable, MergeGroup] = {}
    counter = [0]
    for obj in objects:
        key, world_space = group_key(obj, policy, lightmapping)
        group = groups.get(key)
        if group is None:
            group = MergeGroup(key=key, mesh_id=_group_mesh_id(obj, key, counter), world_space=world_space)
            groups[key] = group
            if not world_space:
                # Local space: geometry once, placement carried by each member
                group.instances.append(MergeInstance(mesh=obj.mesh, transform=Transform.identity(), name=obj.name))
        if world_space:
            group.instances.append(MergeInstance(
                mesh=obj.mesh,
                transform=obj.transform,
                lightmap_scale_offset=obj.lightmap_scale_offset if (lightmapping and obj.has_lightmap) else None,
                name=obj.name,
            ))
        group.members.append(obj)

    logger.info("Merge: %d objects -> %d groups (%s)", len(objects), len(groups), policy)
    return list(groups.values())


def build_groups(
    groups: Sequence[MergeGroup],
    registry: AssetRegistry,
    synthesize_uv0: bool = True,
    lightmap_uvs: bool = True,
) -> List[AssetMesh]:
    """Register and build one ``AssetMesh`` per group."""
    meshes = []
    for group in groups:
        target = registry.register_mesh(group.key, group.mesh_id)
        group.mesh_id = target.id
        build_group(group.instances, target, synthesize_uv0=synthesize_uv0, lightmap_uvs=lightmap_uvs)
        meshes.append(target)
    return meshes
