"""
Blender -> exporter coordinate conversion.

Blender is Z-up and right-handed; the exporter works Y-up and left-handed
(Unity convention).  Swapping Y and Z converts between the two: it is a
reflection, so triangle winding must be reversed and rotation angles flip
sign.  Nothing here imports ``bpy`` so it can be used (and tested) outside
Blender.
"""

from __future__ import annotations

import os
import sys
from typing import List, Optional, Sequence, Tuple

import numpy as np

_script_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "script")
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from scene_model import MeshData, Transform


def convert_position(x: float, y: float, z: float) -> Tuple[float, float, float]:
    return (float(x), float(z), float(y))


def convert_scale(x: float, y: float, z: float) -> Tuple[float, float, float]:
    return (float(x), float(z), float(y))


def convert_quaternion(w: float, x: float, y: float, z: float) -> Tuple[float, float, float, float]:
    """Blender ``(w, x, y, z)`` -> exporter ``(x, y, z, w)``.

    Reflecting the axis through the Y/Z swap also reverses the rotation
    direction, hence the negated vector part.
    """
    return (-float(x), -float(z), -float(y), float(w))


def convert_transform(location: Sequence[float], rotation_wxyz: Sequence[float], scale: Sequence[float]) -> Transform:
    return Transform(
        position=convert_position(*location),
        rotation=convert_quaternion(*rotation_wxyz),
        scale=convert_scale(*scale),
    )


def convert_points(points: np.ndarray) -> np.ndarray:
    """Swap the Y and Z columns of an ``(N, 3)`` array."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return pts[:, [0, 2, 1]].copy()


def reverse_winding(triangles: np.ndarray) -> np.ndarray:
    return np.asarray(triangles, dtype=np.int64).reshape(-1, 3)[:, ::-1].reshape(-1)


def mesh_from_corners(
    name: str,
    corner_positions: np.ndarray,
    corner_normals: np.ndarray,
    material_indices: Sequence[int],
    slot_count: int,
    corner_uv0: Optional[np.ndarray] = None,
    corner_uv1: Optional[np.ndarray] = None,
) -> MeshData:
    """Build a ``MeshData`` from per-corner triangle data.

    Every triangle corner becomes its own vertex (Blender stores normals and
    UVs per corner), corners are given triangle by triangle, and
    ``material_indices`` holds one slot index per triangle.
    """
    positions = convert_points(corner_positions)
    normals = convert_points(corner_normals)
    tri_count = len(positions) // 3
    triangles = reverse_winding(np.arange(tri_count * 3, dtype=np.int64))

    mats = np.asarray(material_indices, dtype=np.int64).reshape(-1)
    if len(mats) != tri_count:
        raise ValueError(f"{name}: {len(mats)} material indices for {tri_count} triangles")
    slots = max(int(slot_count), 1)
    mats = np.clip(mats, 0, slots - 1)

    by_triangle = triangles.reshape(-1, 3)
    submeshes: List[np.ndarray] = [by_triangle[mats == slot].reshape(-1) for slot in range(slots)]

    return MeshData(
        name=name,
        vertices=positions,
        normals=normals,
        triangles=np.concatenate(submeshes) if submeshes else triangles,
        uv0=corner_uv0,
        uv1=corner_uv1,
        submeshes=submeshes,
    )
