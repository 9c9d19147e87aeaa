"""
Export configuration for the Janus scene exporter.

Single source of truth for every option the pipeline reads.  Construct an
``ExportConfig`` (directly, from CLI args, or from a JSON file), then call
``resolve()`` once before handing it to the pipeline.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Tuple

from export_errors import ConfigurationError

logger = logging.getLogger("janus_export.config")


# ---------------------------------------------------------------------------
# Project root
# ---------------------------------------------------------------------------
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_DEFAULT_EXPORT_DIR = os.path.join(_PROJECT_ROOT, "output")

EXPORTER_VERSION = 203

# ---------------------------------------------------------------------------
# Stage ordering -- used by the pipeline runner
# ---------------------------------------------------------------------------
PIPELINE_STAGES: List[str] = [
    "scene_walk",
    "mesh_merge",
    "materials",
    "lightmaps",
    "write_assets",
    "serialize",
]

# ---------------------------------------------------------------------------
# Option vocabularies
# ---------------------------------------------------------------------------
LIGHTMAP_NONE = "none"
LIGHTMAP_BAKED_MATERIAL = "baked_material"
LIGHTMAP_PACKED = "packed"
LIGHTMAP_PACKED_SOURCE_EXR = "packed_source_exr"
LIGHTMAP_UNPACKED = "unpacked"

LIGHTMAP_MODES: List[str] = [
    LIGHTMAP_NONE,
    LIGHTMAP_BAKED_MATERIAL,
    LIGHTMAP_PACKED,
    LIGHTMAP_PACKED_SOURCE_EXR,
    LIGHTMAP_UNPACKED,
]

# Modes whose Object elements carry lmap_sca
PACKED_LIGHTMAP_MODES = (LIGHTMAP_PACKED, LIGHTMAP_PACKED_SOURCE_EXR)

MERGE_PER_OBJECT = "per_object"
MERGE_PER_LIGHTMAP = "per_lightmap"
MERGE_PER_MATERIAL = "per_material"

MERGE_POLICIES: List[str] = [MERGE_PER_OBJECT, MERGE_PER_LIGHTMAP, MERGE_PER_MATERIAL]

TEXTURE_FORMATS: List[str] = ["jpg", "png"]
MESH_FORMATS: List[str] = ["glb", "obj"]

# lmap_sca clamp ranges per downstream consumer
LMAP_SCALE_SIGNED: Tuple[float, float] = (-2.0, 2.0)
LMAP_SCALE_UNIT: Tuple[float, float] = (0.0, 1.0)


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------
@dataclass
class ExportConfig:
    """Centralised configuration for one export run."""

    # --- Output ---
    export_dir: str = _DEFAULT_EXPORT_DIR
    document_name: str = "index.html"
    title: str = "Janus Scene Exporter"

    # --- Textures ---
    texture_format: str = "jpg"
    texture_quality: int = 70
    force_retranscode: bool = False

    # --- Meshes ---
    mesh_format: str = "glb"
    uniform_scale: float = 1.0
    merge_policy: str = MERGE_PER_OBJECT
    synthesize_uv0: bool = True

    # --- Lightmaps ---
    lightmap_mode: str = LIGHTMAP_PACKED
    lightmap_max_resolution: int = 2048
    lightmap_rel_fstops: float = 0.0
    lmap_scale_range: Tuple[float, float] = field(default_factory=lambda: LMAP_SCALE_SIGNED)

    # --- Materials ---
    export_materials: bool = True
    export_material_colors: bool = True

    # --- Skybox ---
    export_skybox: bool = True
    skybox_resolution: int = 1024

    # --- Scene walk policy ---
    ignore_inactive: bool = True
    export_dynamic: bool = False

    # --- Run mode ---
    html_only: bool = False

    # --- Derived (populated by resolve()) ---
    document_path: str = ""

    @property
    def texture_extension(self) -> str:
        return "." + self.texture_format

    @property
    def mesh_extension(self) -> str:
        return "." + self.mesh_format

    @property
    def lightmapping(self) -> bool:
        return self.lightmap_mode != LIGHTMAP_NONE

    def validate(self) -> None:
        """Raise ``ConfigurationError`` for out-of-vocabulary or out-of-range options."""
        if self.lightmap_mode not in LIGHTMAP_MODES:
            raise ConfigurationError(
                f"Unknown lightmap mode {self.lightmap_mode!r}. Available: {LIGHTMAP_MODES}"
            )
        if self.merge_policy not in MERGE_POLICIES:
            raise ConfigurationError(
                f"Unknown merge policy {self.merge_policy!r}. Available: {MERGE_POLICIES}"
            )
        if self.texture_format not in TEXTURE_FORMATS:
            raise ConfigurationError(
                f"Unsupported texture format {self.texture_format!r}. Available: {TEXTURE_FORMATS}"
            )
        if self.mesh_format not in MESH_FORMATS:
            raise ConfigurationError(
                f"Unsupported mesh format {self.mesh_format!r}. Available: {MESH_FORMATS}"
            )
        if not 0 <= self.texture_quality <= 100:
            raise ConfigurationError(
                f"texture_quality must be within 0-100, got {self.texture_quality}"
            )
        if self.lightmap_max_resolution < 16:
            raise ConfigurationError(
                f"lightmap_max_resolution must be at least 16, got {self.lightmap_max_resolution}"
            )
        lo, hi = self.lmap_scale_range
        if lo >= hi:
            raise ConfigurationError(f"Invalid lmap_scale_range {self.lmap_scale_range}")

    def resolve(self) -> "ExportConfig":
        """Validate options, derive paths and create the export directory.

        Call this once after construction (and after any overrides).

        Raises:
            ConfigurationError: If an option is invalid or the export
                directory cannot be created.
        """
        self.texture_format = self.texture_format.lower()
        self.mesh_format = self.mesh_format.lower()
        self.validate()
        self.skybox_resolution = max(4, int(self.skybox_resolution))
        self.lmap_scale_range = (float(self.lmap_scale_range[0]), float(self.lmap_scale_range[1]))

        self.export_dir = os.path.abspath(self.export_dir)
        try:
            os.makedirs(self.export_dir, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create export directory {self.export_dir}: {e}"
            ) from e
        self.document_path = os.path.join(self.export_dir, self.document_name)

        logger.debug("Export directory: %s", self.export_dir)
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportConfig":
        """Build a config from a plain dict, ignoring unknown keys with a warning."""
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown config key %r", key)
                continue
            if key == "lmap_scale_range":
                value = tuple(value)
            kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: str) -> "ExportConfig":
        """Load a config from a JSON file (``{"texture_format": "png", ...}``)."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")
        return cls.from_dict(data)
