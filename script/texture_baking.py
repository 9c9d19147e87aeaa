"""
Texture-baking service: render geometry with a shading pass into a flat
RGBA buffer and read it back.

``TextureBakingService`` is the interface the lightmap pipeline talks to.
Every bake follows the same order on one render target::

    acquire -> clear -> draw* -> read_back -> release

and only one render target may be held at a time.  ``SoftwareBaker`` is a
numpy rasterizer implementing the interface; it enforces the ordering and
pools released buffers by size.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from export_errors import BakingStateError, ConfigurationError
from scene_model import WHITE, Color, SkySampler, Vec4, to_rgba

logger = logging.getLogger("janus_export.baking")

# ---------------------------------------------------------------------------
# Shading passes
# ---------------------------------------------------------------------------
SHADING_EXPOSURE = "exposure"   # decoded lightmap only
SHADING_BAKED = "baked"         # diffuse texture * colour * decoded lightmap
SHADING_SKY = "sky"             # procedural sky, one cube face

SHADING_PASSES = (SHADING_EXPOSURE, SHADING_BAKED, SHADING_SKY)

GAMMA = 2.2

# Cube face -> (right, up, forward) axes used to turn face UVs into directions
_FACE_AXES: Dict[str, Tuple[Tuple[float, float, float], ...]] = {
    "front": ((1, 0, 0), (0, 1, 0), (0, 0, 1)),
    "back": ((-1, 0, 0), (0, 1, 0), (0, 0, -1)),
    "left": ((0, 0, 1), (0, 1, 0), (-1, 0, 0)),
    "right": ((0, 0, -1), (0, 1, 0), (1, 0, 0)),
    "up": ((1, 0, 0), (0, 0, -1), (0, 1, 0)),
    "down": ((1, 0, 0), (0, 0, 1), (0, -1, 0)),
}


@dataclass
class ShadingParams:
    """Inputs of one shading pass.

    ``rel_fstops`` and ``is_linear`` drive the exposure decode applied to
    lightmap samples (and sky colours): ``value * 2**rel_fstops`` then a
    linear-to-gamma conversion when the scene works in linear space.
    """

    mode: str
    lightmap: Optional[np.ndarray] = None
    diffuse_texture: Optional[np.ndarray] = None
    diffuse_color: Color = WHITE
    tiling: Optional[Vec4] = None
    rel_fstops: float = 0.0
    is_linear: bool = True
    sampler: Optional[SkySampler] = None
    face: str = "front"


@dataclass
class DrawCall:
    """Triangles placed at ``positions`` (target UV space, 0-1, v up)."""

    positions: np.ndarray
    triangles: np.ndarray
    shading: ShadingParams
    lightmap_uvs: Optional[np.ndarray] = None
    surface_uvs: Optional[np.ndarray] = None


def full_target_quad(shading: ShadingParams) -> DrawCall:
    """Two triangles covering the whole target; UVs equal positions."""
    positions = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
    triangles = np.array([0, 1, 2, 0, 2, 3], dtype=np.int64)
    return DrawCall(
        positions=positions,
        triangles=triangles,
        shading=shading,
        lightmap_uvs=positions,
        surface_uvs=positions,
    )


def decode_exposure(rgb: np.ndarray, rel_fstops: float, is_linear: bool) -> np.ndarray:
    """Map HDR values to displayable 0-1 values."""
    out = np.clip(np.asarray(rgb, dtype=np.float32) * np.float32(2.0 ** rel_fstops), 0.0, None)
    if is_linear:
        out = np.power(out, 1.0 / GAMMA)
    return np.clip(out, 0.0, 1.0)


def sample_bilinear(texture: np.ndarray, uvs: np.ndarray, wrap: bool = False) -> np.ndarray:
    """Sample an ``(H, W, C)`` texture at ``(N, 2)`` UVs (v up)."""
    tex = np.asarray(texture, dtype=np.float32)
    h, w = tex.shape[:2]
    u = uvs[:, 0] * w - 0.5
    v = (1.0 - uvs[:, 1]) * h - 0.5
    x0 = np.floor(u).astype(np.int64)
    y0 = np.floor(v).astype(np.int64)
    fx = (u - x0)[:, None]
    fy = (v - y0)[:, None]
    x1 = x0 + 1
    y1 = y0 + 1
    if wrap:
        x0, x1 = x0 % w, x1 % w
        y0, y1 = y0 % h, y1 % h
    else:
        x0, x1 = np.clip(x0, 0, w - 1), np.clip(x1, 0, w - 1)
        y0, y1 = np.clip(y0, 0, h - 1), np.clip(y1, 0, h - 1)
    top = tex[y0, x0] * (1.0 - fx) + tex[y0, x1] * fx
    bottom = tex[y1, x0] * (1.0 - fx) + tex[y1, x1] * fx
    return top * (1.0 - fy) + bottom * fy


# ---------------------------------------------------------------------------
# Render targets
# ---------------------------------------------------------------------------
_ACQUIRED = "acquired"
_CLEARED = "cleared"
_DRAWN = "drawn"
_READ = "read"
_RELEASED = "released"


class RenderTarget:
    def __init__(self, width: int, height: int, buffer: np.ndarray):
        self.width = width
        self.height = height
        self.buffer = buffer
        self.state = _ACQUIRED

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height


class TextureBakingService:
    """Interface of the baking service used by the lightmap pipeline."""

    def acquire(self, width: int, height: int) -> RenderTarget:
        raise NotImplementedError

    def clear(self, target: RenderTarget, color: Color = (0.0, 0.0, 0.0, 0.0)) -> None:
        raise NotImplementedError

    def draw(self, target: RenderTarget, call: DrawCall) -> None:
        raise NotImplementedError

    def read_back(self, target: RenderTarget) -> np.ndarray:
        raise NotImplementedError

    def release(self, target: RenderTarget) -> None:
        raise NotImplementedError

    @contextmanager
    def render_target(self, width: int, height: int) -> Iterator[RenderTarget]:
        """Acquire a target cleared to transparent black; release it on exit."""
        target = self.acquire(width, height)
        try:
            self.clear(target)
            yield target
        finally:
            self.release(target)

    def render_skybox_face(
        self,
        sampler: SkySampler,
        face: str,
        resolution: int,
        is_linear: bool = True,
    ) -> np.ndarray:
        """Render one face of a procedural sky at ``resolution`` squared."""
        if face not in _FACE_AXES:
            raise ConfigurationError(f"Unknown skybox face {face!r}")
        shading = ShadingParams(mode=SHADING_SKY, sampler=sampler, face=face, is_linear=is_linear)
        with self.render_target(resolution, resolution) as target:
            self.draw(target, full_target_quad(shading))
            return self.read_back(target)


class SoftwareBaker(TextureBakingService):
    """CPU rasterizer with a size-keyed render-target pool."""

    def __init__(self) -> None:
        self._pool: Dict[Tuple[int, int], List[np.ndarray]] = {}
        self._held: Optional[RenderTarget] = None
        self.draw_calls = 0
        self.history: List[Tuple[str, int, int]] = []

    # ------------------------------------------------------------------
    # Render target lifecycle
    # ------------------------------------------------------------------
    def acquire(self, width: int, height: int) -> RenderTarget:
        if self._held is not None:
            raise BakingStateError(
                f"Render target {self._held.size} still held; release it before acquiring another"
            )
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid render target size {width}x{height}")
        free = self._pool.get((width, height))
        buffer = free.pop() if free else np.empty((height, width, 4), dtype=np.float32)
        target = RenderTarget(width, height, buffer)
        self._held = target
        self.history.append(("acquire", width, height))
        return target

    def _check(self, target: RenderTarget, allowed: Tuple[str, ...], op: str) -> None:
        if target is not self._held or target.state not in allowed:
            raise BakingStateError(f"Cannot {op} render target in state {target.state!r}")

    def clear(self, target: RenderTarget, color: Color = (0.0, 0.0, 0.0, 0.0)) -> None:
        self._check(target, (_ACQUIRED, _CLEARED, _DRAWN), "clear")
        target.buffer[:, :] = np.asarray(color, dtype=np.float32)
        target.state = _CLEARED
        self.history.append(("clear", target.width, target.height))

    def draw(self, target: RenderTarget, call: DrawCall) -> None:
        self._check(target, (_CLEARED, _DRAWN), "draw into")
        if call.shading.mode not in SHADING_PASSES:
            raise ConfigurationError(f"Unknown shading pass {call.shading.mode!r}")
        self._rasterize(target, call)
        target.state = _DRAWN
        self.draw_calls += 1
        self.history.append(("draw", target.width, target.height))

    def read_back(self, target: RenderTarget) -> np.ndarray:
        self._check(target, (_CLEARED, _DRAWN), "read back")
        target.state = _READ
        self.history.append(("read", target.width, target.height))
        return target.buffer.copy()

    def release(self, target: RenderTarget) -> None:
        if target is not self._held:
            raise BakingStateError("Releasing a render target that is not held")
        if target.state != _READ:
            logger.debug("Render target %s released without read-back", target.size)
        target.state = _RELEASED
        self._pool.setdefault(target.size, []).append(target.buffer)
        self._held = None
        self.history.append(("release", target.width, target.height))

    # ------------------------------------------------------------------
    # Rasterization
    # ------------------------------------------------------------------
    def _rasterize(self, target: RenderTarget, call: DrawCall) -> None:
        w, h = target.width, target.height
        pos = np.asarray(call.positions, dtype=np.float64).reshape(-1, 2)
        # target pixel coordinates, row 0 at the top (v = 1)
        px = pos[:, 0] * w
        py = (1.0 - pos[:, 1]) * h
        tris = np.asarray(call.triangles, dtype=np.int64).reshape(-1, 3)

        for a, b, c in tris:
            xs = (px[a], px[b], px[c])
            ys = (py[a], py[b], py[c])
            x_lo = max(int(np.floor(min(xs))), 0)
            x_hi = min(int(np.ceil(max(xs))), w)
            y_lo = max(int(np.floor(min(ys))), 0)
            y_hi = min(int(np.ceil(max(ys))), h)
            if x_lo >= x_hi or y_lo >= y_hi:
                continue

            area = (xs[1] - xs[0]) * (ys[2] - ys[0]) - (xs[2] - xs[0]) * (ys[1] - ys[0])
            if abs(area) < 1e-12:
                continue

            gx, gy = np.meshgrid(np.arange(x_lo, x_hi) + 0.5, np.arange(y_lo, y_hi) + 0.5)
            w0 = ((xs[1] - gx) * (ys[2] - gy) - (xs[2] - gx) * (ys[1] - gy)) / area
            w1 = ((xs[2] - gx) * (ys[0] - gy) - (xs[0] - gx) * (ys[2] - gy)) / area
            w2 = 1.0 - w0 - w1
            inside = (w0 >= -1e-9) & (w1 >= -1e-9) & (w2 >= -1e-9)
            if not inside.any():
                continue

            bary = np.stack([w0[inside], w1[inside], w2[inside]], axis=1)
            rows = gy[inside].astype(np.int64)
            cols = gx[inside].astype(np.int64)
            idx = np.array([a, b, c])

            lm_uv = _interpolate(call.lightmap_uvs, idx, bary)
            surf_uv = _interpolate(call.surface_uvs, idx, bary)
            target.buffer[rows, cols] = self._shade(call.shading, lm_uv, surf_uv, len(rows))

    def _shade(
        self,
        shading: ShadingParams,
        lightmap_uv: Optional[np.ndarray],
        surface_uv: Optional[np.ndarray],
        count: int,
    ) -> np.ndarray:
        out = np.ones((count, 4), dtype=np.float32)

        if shading.mode == SHADING_SKY:
            right, up, forward = (np.asarray(v, dtype=np.float64) for v in _FACE_AXES[shading.face])
            s = surface_uv[:, 0:1] * 2.0 - 1.0
            t = surface_uv[:, 1:2] * 2.0 - 1.0
            dirs = forward + s * right + t * up
            dirs /= np.linalg.norm(dirs, axis=1, keepdims=True)
            out[:, :3] = decode_exposure(shading.sampler(dirs), shading.rel_fstops, shading.is_linear)
            return out

        light = np.ones((count, 3), dtype=np.float32)
        if shading.lightmap is not None and lightmap_uv is not None:
            hdr = sample_bilinear(to_rgba(shading.lightmap), lightmap_uv)
            light = decode_exposure(hdr[:, :3], shading.rel_fstops, shading.is_linear)

        if shading.mode == SHADING_EXPOSURE:
            out[:, :3] = light
            return out

        diffuse = np.ones((count, 4), dtype=np.float32)
        if shading.diffuse_texture is not None and surface_uv is not None:
            uv = surface_uv
            if shading.tiling is not None:
                sx, sy, ox, oy = shading.tiling
                uv = uv * np.array([sx, sy]) + np.array([ox, oy])
            diffuse = sample_bilinear(to_rgba(shading.diffuse_texture), uv, wrap=True)
        diffuse = diffuse * np.asarray(shading.diffuse_color, dtype=np.float32)
        out[:, :3] = np.clip(diffuse[:, :3] * light, 0.0, 1.0)
        out[:, 3] = np.clip(diffuse[:, 3], 0.0, 1.0)
        return out


def _interpolate(values: Optional[np.ndarray], idx: np.ndarray, bary: np.ndarray) -> Optional[np.ndarray]:
    if values is None:
        return None
    corners = np.asarray(values, dtype=np.float64)[idx]  # (3, 2)
    return bary @ corners
