"""
Mesh encoders: write merged ``AssetMesh`` geometry as OBJ or binary glTF.

Geometry arrives in the exporter's source convention (Y-up, left-handed).
Janus rooms mirror X, so vertices and normals are written with X negated
and triangle winding reversed.  When ``swap_uv`` is set the lightmap channel
is written as the surface channel (baked-material exports sample the baked
image through the lightmap UVs).

GLB keeps both UV channels (TEXCOORD_0 / TEXCOORD_1); OBJ only has one.
"""

from __future__ import annotations

import json
import logging
import struct
from typing import Dict, List, Optional, Tuple

import numpy as np

from asset_registry import AssetMesh
from export_errors import EncodingError

logger = logging.getLogger("janus_export.meshes")

GLB_MAGIC = b"glTF"
GLB_VERSION = 2
_CHUNK_JSON = 0x4E4F534A
_CHUNK_BIN = 0x004E4942

_FLOAT = 5126
_UINT = 5125
_ARRAY_BUFFER = 34962
_ELEMENT_ARRAY_BUFFER = 34963


def to_output_space(mesh: AssetMesh) -> Tuple[np.ndarray, np.ndarray, List[np.ndarray]]:
    """Mirror X and flip winding; return ``(vertices, normals, submeshes)``."""
    vertices = np.asarray(mesh.vertices, dtype=np.float64).copy()
    normals = np.asarray(mesh.normals, dtype=np.float64).copy()
    vertices[:, 0] *= -1.0
    normals[:, 0] *= -1.0
    submeshes = [np.asarray(s, dtype=np.int64).reshape(-1, 3)[:, ::-1].reshape(-1) for s in mesh.submeshes]
    return vertices, normals, submeshes


def surface_channels(mesh: AssetMesh, swap_uv: bool) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    """UV channels as written: ``(surface, lightmap)``."""
    if swap_uv and mesh.uv1 is not None:
        return mesh.uv1, mesh.uv0
    return mesh.uv0, mesh.uv1


class MeshEncoder:
    """Base class: ``write`` returns the extension of the file it produced."""

    extension = ""

    def write(self, mesh: AssetMesh, path_base: str, swap_uv: bool = False) -> str:
        path = path_base + self.extension
        try:
            self._write(mesh, path, swap_uv)
        except (OSError, ValueError, struct.error) as e:
            raise EncodingError(f"Failed to write mesh {path}: {e}") from e
        logger.debug("Wrote %s (%d vertices)", path, mesh.vertex_count)
        return self.extension

    def _write(self, mesh: AssetMesh, path: str, swap_uv: bool) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# OBJ
# ---------------------------------------------------------------------------
class ObjMeshEncoder(MeshEncoder):
    extension = ".obj"

    def _write(self, mesh: AssetMesh, path: str, swap_uv: bool) -> None:
        vertices, normals, submeshes = to_output_space(mesh)
        uvs, _ = surface_channels(mesh, swap_uv)
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            f.write(f"o {mesh.id}\n")
            for x, y, z in vertices:
                f.write(f"v {x:.6f} {y:.6f} {z:.6f}\n")
            if uvs is not None:
                for u, v in uvs:
                    f.write(f"vt {u:.6f} {v:.6f}\n")
            for nx, ny, nz in normals:
                f.write(f"vn {nx:.6f} {ny:.6f} {nz:.6f}\n")
            for slot, sub in enumerate(submeshes):
                f.write(f"g {mesh.id}_{slot}\n")
                for a, b, c in sub.reshape(-1, 3) + 1:
                    if uvs is not None:
                        f.write(f"f {a}/{a}/{a} {b}/{b}/{b} {c}/{c}/{c}\n")
                    else:
                        f.write(f"f {a}//{a} {b}//{b} {c}//{c}\n")


# ---------------------------------------------------------------------------
# GLB
# ---------------------------------------------------------------------------
class GlbMeshEncoder(MeshEncoder):
    extension = ".glb"

    def _write(self, mesh: AssetMesh, path: str, swap_uv: bool) -> None:
        with open(path, "wb") as f:
            f.write(self.encode(mesh, swap_uv))

    def encode(self, mesh: AssetMesh, swap_uv: bool = False) -> bytes:
        vertices, normals, submeshes = to_output_space(mesh)
        uv_surface, uv_lightmap = surface_channels(mesh, swap_uv)

        blob = bytearray()
        views: List[Dict] = []
        accessors: List[Dict] = []

        def add(data: np.ndarray, component: int, kind: str, target: int, bounds: bool = False) -> int:
            raw = data.tobytes()
            while len(blob) % 4:
                blob.append(0)
            views.append({"buffer": 0, "byteOffset": len(blob), "byteLength": len(raw), "target": target})
            blob.extend(raw)
            count = data.shape[0] if data.ndim > 1 else data.size
            accessor = {"bufferView": len(views) - 1, "componentType": component, "count": int(count), "type": kind}
            if bounds:
                accessor["min"] = [float(v) for v in data.min(axis=0)]
                accessor["max"] = [float(v) for v in data.max(axis=0)]
            accessors.append(accessor)
            return len(accessors) - 1

        attributes = {
            "POSITION": add(vertices.astype(np.float32), _FLOAT, "VEC3", _ARRAY_BUFFER, bounds=True),
            "NORMAL": add(normals.astype(np.float32), _FLOAT, "VEC3", _ARRAY_BUFFER),
        }
        # glTF texture space has v pointing down
        for name, uvs in (("TEXCOORD_0", uv_surface), ("TEXCOORD_1", uv_lightmap)):
            if uvs is None:
                continue
            flipped = np.asarray(uvs, dtype=np.float32).copy()
            flipped[:, 1] = 1.0 - flipped[:, 1]
            attributes[name] = add(flipped, _FLOAT, "VEC2", _ARRAY_BUFFER)

        primitives = []
        for sub in submeshes:
            if len(sub) == 0:
                continue
            indices = add(sub.astype(np.uint32), _UINT, "SCALAR", _ELEMENT_ARRAY_BUFFER)
            primitives.append({"attributes": dict(attributes), "indices": indices, "mode": 4})

        while len(blob) % 4:
            blob.append(0)

        document = {
            "asset": {"version": "2.0", "generator": "janus-scene-export"},
            "scene": 0,
            "scenes": [{"nodes": [0]}],
            "nodes": [{"mesh": 0, "name": mesh.id}],
            "meshes": [{"name": mesh.id, "primitives": primitives}],
            "buffers": [{"byteLength": len(blob)}],
            "bufferViews": views,
            "accessors": accessors,
        }
        json_bytes = json.dumps(document, separators=(",", ":")).encode("utf-8")
        json_bytes += b" " * (-len(json_bytes) % 4)

        total = 12 + 8 + len(json_bytes) + 8 + len(blob)
        out = bytearray()
        out += struct.pack("<4sII", GLB_MAGIC, GLB_VERSION, total)
        out += struct.pack("<II", len(json_bytes), _CHUNK_JSON) + json_bytes
        out += struct.pack("<II", len(blob), _CHUNK_BIN) + bytes(blob)
        return bytes(out)


MESH_ENCODERS = {
    "obj": ObjMeshEncoder,
    "glb": GlbMeshEncoder,
}


def create_mesh_encoder(mesh_format: str) -> MeshEncoder:
    cls = MESH_ENCODERS.get(mesh_format.lower())
    if cls is None:
        raise ValueError(f"Unknown mesh format {mesh_format!r}. Available: {sorted(MESH_ENCODERS)}")
    return cls()
