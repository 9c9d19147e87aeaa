"""Stage 2: Mesh merge -- group objects, build merged meshes, create room objects.

Room objects are created in object discovery order.  Local-space groups
(``per_object``) give every member its own room object; world-space groups
give one room object at the identity transform.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Dict, Set

logger = logging.getLogger("janus_export.s02")

_script_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from export_session import ExportSession, RoomObject
from mesh_merge import MergeGroup, build_groups, group_objects
from scene_model import Transform


def _unique_name(base: str, taken: Set[str]) -> str:
    name = base
    k = 1
    while name in taken:
        name = f"{base}_{k}"
        k += 1
    taken.add(name)
    return name


def run(session: ExportSession) -> None:
    """Execute Stage 2."""
    config = session.config
    lightmapping = session.strategy.uses_lightmap_uvs

    groups = group_objects(session.objects, config.merge_policy, lightmapping=lightmapping)
    build_groups(
        groups,
        session.registry,
        synthesize_uv0=config.synthesize_uv0,
        lightmap_uvs=lightmapping,
    )
    session.groups = groups

    group_of: Dict[int, MergeGroup] = {}
    for group in groups:
        for member in group.members:
            group_of[id(member)] = group

    taken: Set[str] = set()
    placed: Set[int] = set()
    room_objects = []
    for obj in session.objects:
        group = group_of[id(obj)]
        mesh = session.registry.get_mesh(group.key)
        if not group.world_space:
            room_objects.append(RoomObject(
                id=mesh.id,
                name=_unique_name(obj.name, taken),
                mesh=mesh,
                transform=obj.transform,
                members=[obj],
                lightmap_index=obj.lightmap_index if lightmapping else -1,
                has_collider=obj.has_collider,
            ))
        elif id(group) not in placed:
            placed.add(id(group))
            room_objects.append(RoomObject(
                id=mesh.id,
                name=_unique_name(mesh.id, taken),
                mesh=mesh,
                transform=Transform.identity(),
                members=list(group.members),
                atlas_space=True,
                lightmap_index=obj.lightmap_index if lightmapping else -1,
                has_collider=any(m.has_collider for m in group.members),
            ))
    session.room_objects = room_objects

    logger.info(
        "Stage 2: %d meshes, %d room objects (%s)",
        len(groups), len(room_objects), config.merge_policy,
    )
