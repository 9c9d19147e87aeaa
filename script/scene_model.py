"""
Host-independent scene data model consumed by the exporter.

A host (the JSON scene loader, the Blender adapter, or a test) builds a tree of
``SceneNode`` objects.  Each node carries a local ``Transform`` and a small,
closed set of capabilities:

- ``Renderable``  -- a mesh with one material per sub-mesh plus lightmap data
- ``Collidable``  -- the node has a collider (exported as ``collision_id``)
- ``ReflectionProbe`` -- an environment capture
- ``LinkPortal``  -- a JanusVR portal; claimed exclusively by the link extractor

Coordinate convention is Y-up with Unity-style rotations: quaternions are
``(x, y, z, w)`` and the forward axis is +Z.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

import numpy as np
from PIL import Image

os.environ.setdefault("OPENCV_IO_ENABLE_OPENEXR", "1")
import cv2  # noqa: E402

from export_errors import SkippableAssetError

Vec2 = Tuple[float, float]
Vec3 = Tuple[float, float, float]
Vec4 = Tuple[float, float, float, float]
Color = Tuple[float, float, float, float]

WHITE: Color = (1.0, 1.0, 1.0, 1.0)


# ---------------------------------------------------------------------------
# Quaternion helpers
# ---------------------------------------------------------------------------
def quaternion_to_matrix(q: Vec4) -> np.ndarray:
    """Return the 3x3 rotation matrix for a unit quaternion ``(x, y, z, w)``."""
    x, y, z, w = (float(c) for c in q)
    n = x * x + y * y + z * z + w * w
    if n == 0.0:
        return np.eye(3)
    s = 2.0 / n
    return np.array([
        [1.0 - s * (y * y + z * z), s * (x * y - z * w), s * (x * z + y * w)],
        [s * (x * y + z * w), 1.0 - s * (x * x + z * z), s * (y * z - x * w)],
        [s * (x * z - y * w), s * (y * z + x * w), 1.0 - s * (x * x + y * y)],
    ])


def quaternion_multiply(a: Vec4, b: Vec4) -> Vec4:
    """Hamilton product ``a * b`` (apply ``b`` first, then ``a``)."""
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return (
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
        aw * bw - ax * bx - ay * by - az * bz,
    )


# ---------------------------------------------------------------------------
# Transform / bounds
# ---------------------------------------------------------------------------
@dataclass
class Transform:
    """Position, rotation quaternion and (lossy) scale."""

    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Vec4 = (0.0, 0.0, 0.0, 1.0)
    scale: Vec3 = (1.0, 1.0, 1.0)

    @classmethod
    def identity(cls) -> "Transform":
        return cls()

    def rotation_matrix(self) -> np.ndarray:
        return quaternion_to_matrix(self.rotation)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Scale, rotate, then translate an ``(N, 3)`` array of points."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        scaled = pts * np.asarray(self.scale, dtype=np.float64)
        return scaled @ self.rotation_matrix().T + np.asarray(self.position, dtype=np.float64)

    def transform_directions(self, directions: np.ndarray) -> np.ndarray:
        """Rotate an ``(N, 3)`` array of directions (no translation, no scale)."""
        dirs = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        return dirs @ self.rotation_matrix().T

    def basis(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return the rotated unit X, Y and Z axes."""
        m = self.rotation_matrix()
        return m[:, 0], m[:, 1], m[:, 2]

    def compose(self, child: "Transform") -> "Transform":
        """World transform of *child* (given in this transform's local space)."""
        position = self.transform_points(np.asarray(child.position))[0]
        rotation = quaternion_multiply(self.rotation, child.rotation)
        scale = np.asarray(self.scale) * np.asarray(child.scale)
        return Transform(
            position=tuple(float(v) for v in position),
            rotation=tuple(float(v) for v in rotation),
            scale=tuple(float(v) for v in scale),
        )


@dataclass
class Bounds:
    """Axis-aligned bounding box."""

    minimum: np.ndarray
    maximum: np.ndarray

    @classmethod
    def from_points(cls, points: np.ndarray) -> Optional["Bounds"]:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(pts) == 0:
            return None
        return cls(pts.min(axis=0), pts.max(axis=0))

    def encapsulate(self, other: "Bounds") -> "Bounds":
        return Bounds(np.minimum(self.minimum, other.minimum), np.maximum(self.maximum, other.maximum))

    @property
    def size(self) -> np.ndarray:
        return self.maximum - self.minimum

    @property
    def diagonal(self) -> float:
        return float(np.linalg.norm(self.size))


# ---------------------------------------------------------------------------
# Mesh
# ---------------------------------------------------------------------------
def _as_array(values: Any, width: int, dtype: Any) -> np.ndarray:
    if values is None:
        return np.zeros((0, width), dtype=dtype)
    return np.asarray(values, dtype=dtype).reshape(-1, width)


@dataclass(eq=False)
class MeshData:
    """Source mesh geometry.

    ``submeshes`` holds one flat triangle index list per material slot; when
    omitted the whole ``triangles`` list is a single sub-mesh.  ``uv1`` is the
    lightmap channel.
    """

    name: str
    vertices: Any = None
    normals: Any = None
    triangles: Any = None
    uv0: Any = None
    uv1: Any = None
    submeshes: Optional[List[Any]] = None

    def __post_init__(self) -> None:
        self.vertices = _as_array(self.vertices, 3, np.float64)
        self.normals = _as_array(self.normals, 3, np.float64)
        if self.uv0 is not None:
            self.uv0 = _as_array(self.uv0, 2, np.float64)
        if self.uv1 is not None:
            self.uv1 = _as_array(self.uv1, 2, np.float64)
        if self.submeshes is not None:
            self.submeshes = [np.asarray(s, dtype=np.int64).reshape(-1) for s in self.submeshes]
            if self.triangles is None:
                self.triangles = (
                    np.concatenate(self.submeshes) if self.submeshes else np.zeros(0, dtype=np.int64)
                )
        if self.triangles is None:
            self.triangles = np.zeros(0, dtype=np.int64)
        self.triangles = np.asarray(self.triangles, dtype=np.int64).reshape(-1)
        if self.submeshes is None:
            self.submeshes = [self.triangles]

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    def lightmap_uvs(self) -> Optional[np.ndarray]:
        """Lightmap UVs: the second channel, falling back to the first."""
        return self.uv1 if self.uv1 is not None else self.uv0


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------
HDR_EXTENSIONS = (".exr",)


@dataclass(eq=False)
class SourceImage:
    """An image as the host knows it: a file on disk and/or an in-memory pixel buffer.

    ``pixels`` are float32 ``(H, W, 4)`` RGBA.  Values may exceed 1.0 for
    HDR sources such as lightmaps.
    """

    name: str
    path: Optional[str] = None
    pixels: Optional[np.ndarray] = None
    alpha_is_transparency: bool = False

    @property
    def extension(self) -> str:
        if not self.path:
            return ""
        return os.path.splitext(self.path)[1].lower()

    @property
    def size(self) -> Tuple[int, int]:
        """``(width, height)`` without decoding the whole file."""
        if self.pixels is not None:
            return int(self.pixels.shape[1]), int(self.pixels.shape[0])
        if not self.path or not os.path.isfile(self.path):
            raise SkippableAssetError(f"Image {self.name!r} has no readable source: {self.path}")
        if self.is_hdr:
            pixels = self.load_pixels()
            return int(pixels.shape[1]), int(pixels.shape[0])
        try:
            with Image.open(self.path) as img:
                return img.size
        except OSError as e:
            raise SkippableAssetError(f"Cannot read image {self.path}: {e}") from e

    @property
    def is_hdr(self) -> bool:
        return self.extension in HDR_EXTENSIONS

    def load_pixels(self) -> np.ndarray:
        """Return the image as float32 RGBA, decoding the source file if needed.

        ``.exr`` files go through OpenCV so values above 1.0 survive; other
        formats are decoded with Pillow.

        Raises:
            SkippableAssetError: If there is no pixel data and the file is
                missing or not decodable.
        """
        if self.pixels is not None:
            return to_rgba(self.pixels)
        if not self.path or not os.path.isfile(self.path):
            raise SkippableAssetError(f"Image {self.name!r} has no readable source: {self.path}")
        if self.is_hdr:
            self.pixels = read_hdr_image(self.path)
            return self.pixels
        try:
            with Image.open(self.path) as img:
                if img.mode in ("F", "I", "I;16"):
                    data = np.asarray(img, dtype=np.float32)
                    if img.mode != "F":
                        data = data / (65535.0 if img.mode == "I;16" else 255.0)
                    self.pixels = to_rgba(data)
                else:
                    rgba = np.asarray(img.convert("RGBA"), dtype=np.float32) / 255.0
                    self.pixels = rgba
        except OSError as e:
            raise SkippableAssetError(f"Cannot decode image {self.path}: {e}") from e
        return self.pixels


def read_hdr_image(path: str) -> np.ndarray:
    """Decode an OpenEXR file to float32 RGBA, keeping values above 1.0."""
    try:
        data = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise SkippableAssetError(f"Cannot decode image {path}: {e}") from e
    if data is None:
        raise SkippableAssetError(f"Cannot decode image {path}: OpenCV could not read it")
    data = data.astype(np.float32)
    if data.ndim == 3 and data.shape[2] == 3:
        data = cv2.cvtColor(data, cv2.COLOR_BGR2RGB)
    elif data.ndim == 3 and data.shape[2] == 4:
        data = cv2.cvtColor(data, cv2.COLOR_BGRA2RGBA)
    return to_rgba(data)


def to_rgba(pixels: np.ndarray) -> np.ndarray:
    """Coerce a grey, RGB or RGBA buffer to float32 ``(H, W, 4)``."""
    data = np.asarray(pixels, dtype=np.float32)
    if data.ndim == 2:
        data = data[:, :, None]
    channels = data.shape[2]
    if channels == 4:
        return data
    if channels == 1:
        data = np.repeat(data, 3, axis=2)
    elif channels == 2:
        data = np.concatenate([np.repeat(data[:, :, :1], 3, axis=2), data[:, :, 1:2]], axis=2)
        return data
    alpha = np.ones(data.shape[:2] + (1,), dtype=np.float32)
    return np.concatenate([data[:, :, :3], alpha], axis=2)


# ---------------------------------------------------------------------------
# Materials
# ---------------------------------------------------------------------------
PROPERTY_TEXTURE = "texture"
PROPERTY_COLOR = "color"
PROPERTY_FLOAT = "float"
PROPERTY_VECTOR = "vector"


@dataclass
class ShaderProperty:
    """One shader-exposed material property, in declaration order."""

    name: str
    kind: str
    value: Any = None


@dataclass(eq=False)
class Material:
    name: str
    shader: str = "Standard"
    properties: List[ShaderProperty] = field(default_factory=list)
    texture_scale: Vec2 = (1.0, 1.0)
    texture_offset: Vec2 = (0.0, 0.0)


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------
@dataclass
class Renderable:
    mesh: Optional[MeshData] = None
    materials: List[Optional[Material]] = field(default_factory=list)
    lightmap_index: int = -1
    lightmap_scale_offset: Vec4 = (1.0, 1.0, 0.0, 0.0)

    @property
    def primary_material(self) -> Optional[Material]:
        return self.materials[0] if self.materials else None


@dataclass
class Collidable:
    shape: str = "mesh"


@dataclass
class ReflectionProbe:
    texture: Optional[SourceImage] = None
    resolution: int = 128


@dataclass
class LinkPortal:
    url: str = "http://www.janusvr.com"
    title: str = "JanusVR"
    color: Color = WHITE
    draw_glow: bool = True
    draw_text: bool = True
    auto_load: bool = False
    circular: bool = False


Capability = Any
CAPABILITY_TYPES: Tuple[type, ...] = (Renderable, Collidable, ReflectionProbe, LinkPortal)

C = TypeVar("C")


@dataclass(eq=False)
class SceneNode:
    """One node of the host scene tree.  ``transform`` is local to the parent."""

    name: str
    transform: Transform = field(default_factory=Transform)
    children: List["SceneNode"] = field(default_factory=list)
    capabilities: List[Capability] = field(default_factory=list)
    active: bool = True
    static: bool = True

    def __post_init__(self) -> None:
        for cap in self.capabilities:
            if not isinstance(cap, CAPABILITY_TYPES):
                raise TypeError(f"Unsupported capability on {self.name!r}: {type(cap).__name__}")

    def find(self, kind: Type[C]) -> Optional[C]:
        """Return the first capability of *kind*, or None."""
        for cap in self.capabilities:
            if isinstance(cap, kind):
                return cap
        return None


# ---------------------------------------------------------------------------
# Environment / scene
# ---------------------------------------------------------------------------
SKYBOX_FACES: Tuple[str, ...] = ("front", "back", "left", "right", "up", "down")

# Sampler for procedural skies: (N, 3) unit directions -> (N, 3) linear RGB
SkySampler = Callable[[np.ndarray], np.ndarray]


@dataclass
class Skybox:
    """Either six face images or a procedural sampler rendered per face."""

    faces: Dict[str, SourceImage] = field(default_factory=dict)
    sampler: Optional[SkySampler] = None

    @property
    def is_six_sided(self) -> bool:
        return all(self.faces.get(face) is not None for face in SKYBOX_FACES)


def gradient_sky(top: Vec3, horizon: Vec3, bottom: Vec3) -> SkySampler:
    """Build a three-colour vertical gradient sky sampler."""
    top_c = np.asarray(top, dtype=np.float32)
    horizon_c = np.asarray(horizon, dtype=np.float32)
    bottom_c = np.asarray(bottom, dtype=np.float32)

    def sample(directions: np.ndarray) -> np.ndarray:
        y = np.clip(np.asarray(directions, dtype=np.float32)[:, 1:2], -1.0, 1.0)
        up = np.clip(y, 0.0, 1.0)
        down = np.clip(-y, 0.0, 1.0)
        return horizon_c * (1.0 - up - down) + top_c * up + bottom_c * down

    return sample


@dataclass
class Scene:
    name: str = "Scene"
    roots: List[SceneNode] = field(default_factory=list)
    skybox: Optional[Skybox] = None
    # lightmap index -> HDR source image (Lightmap-<N>_comp_light.*)
    lightmaps: Dict[int, SourceImage] = field(default_factory=dict)
    linear_color_space: bool = True

