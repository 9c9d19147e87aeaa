"""
Janus Scene Exporter -- Main Entry Point

Pipeline:
  1. scene_walk   -- flatten the scene tree into exportable objects
  2. mesh_merge   -- group objects and build merged meshes
  3. materials    -- lightmap image registration + material extraction
  4. lightmaps    -- bake / decode / copy lightmaps for the selected mode
  5. write_assets -- write textures, skybox faces and meshes
  6. serialize    -- write the FireBox room document (index.html)

Usage:
    python janus_export.py --scene scene.json --export-dir out
    python janus_export.py --scene scene.json --export-dir out --lightmap-mode packed_source_exr
    python janus_export.py --scene scene.json --export-dir out --html-only
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Callable, Dict, List, Optional

# ---------------------------------------------------------------------------
# Ensure script/ is on sys.path
# ---------------------------------------------------------------------------
_script_dir = os.path.dirname(os.path.abspath(__file__))
if _script_dir not in sys.path:
    sys.path.insert(0, _script_dir)

from export_config import (
    LIGHTMAP_MODES,
    LIGHTMAP_PACKED_SOURCE_EXR,
    LMAP_SCALE_SIGNED,
    LMAP_SCALE_UNIT,
    MERGE_POLICIES,
    MESH_FORMATS,
    PIPELINE_STAGES,
    TEXTURE_FORMATS,
    ExportConfig,
    _DEFAULT_EXPORT_DIR,
)
from export_errors import ConfigurationError, ExportStageError
from export_session import ExportSession
from scene_loader import load_scene
from scene_model import Scene
from stages import (
    s01_scene_walk,
    s02_mesh_merge,
    s03_materials,
    s04_lightmaps,
    s05_write_assets,
    s06_serialize,
)

logger = logging.getLogger("janus_export")

# ---------------------------------------------------------------------------
# Stage registry
# ---------------------------------------------------------------------------
STAGE_FUNCTIONS: Dict[str, Callable[[ExportSession], None]] = {
    "scene_walk": s01_scene_walk.run,
    "mesh_merge": s02_mesh_merge.run,
    "materials": s03_materials.run,
    "lightmaps": s04_lightmaps.run,
    "write_assets": s05_write_assets.run,
    "serialize": s06_serialize.run,
}


# ---------------------------------------------------------------------------
# Pipeline Runner
# ---------------------------------------------------------------------------
def run_pipeline(session: ExportSession, stages: Optional[List[str]] = None) -> ExportSession:
    """Run the pipeline, either all stages or a subset (in the order given)."""
    if stages is None:
        stages = list(PIPELINE_STAGES)

    logger.info("Export starting with %d stages: %s", len(stages), stages)
    logger.info("Export directory: %s", session.config.export_dir)

    for stage_name in stages:
        func = STAGE_FUNCTIONS.get(stage_name)
        if func is None:
            raise ValueError(
                f"Unknown stage: {stage_name!r}. "
                f"Available: {sorted(STAGE_FUNCTIONS.keys())}"
            )
        try:
            func(session)
        except Exception as e:
            logger.error("Stage '%s' failed: %s", stage_name, e)
            raise ExportStageError(stage_name, f"Export failed at stage '{stage_name}': {e}") from e

    logger.info("Export complete.")
    return session


def export_scene(scene: Scene, config: ExportConfig, **collaborators) -> ExportSession:
    """Export *scene* with *config* and return the finished session.

    Keyword arguments override the session's collaborators (``baker``,
    ``image_encoder``, ``mesh_encoder``, ``registry``, ``extractors``).
    """
    if not config.document_path:
        config.resolve()
    session = ExportSession(config=config, scene=scene, **collaborators)
    return run_pipeline(session)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    p = argparse.ArgumentParser(
        description="Janus Scene Exporter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full export with packed lightmaps
  python janus_export.py --scene gallery.json --export-dir out

  # One merged mesh per lightmap atlas, PNG textures
  python janus_export.py --scene gallery.json --export-dir out \\
      --merge-policy per_lightmap --texture-format png

  # Rewrite only index.html after a full export
  python janus_export.py --scene gallery.json --export-dir out --html-only

Available stages: """ + ", ".join(PIPELINE_STAGES)
    )

    p.add_argument("--scene", required=True, help="Path to the JSON scene description")
    p.add_argument("--export-dir", default=None,
                    help=f"Export directory (default: {_DEFAULT_EXPORT_DIR})")
    p.add_argument("--config", default="", help="JSON file with ExportConfig options")
    p.add_argument(
        "--stage", action="append", dest="stages", default=None,
        help="Run specific stage(s). Can be repeated. If omitted, runs all.",
    )
    p.add_argument("--title", default=None, help="Document title")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    # --- Textures / meshes ---
    p.add_argument("--texture-format", choices=TEXTURE_FORMATS, default=None,
                    help="Texture format (default: jpg)")
    p.add_argument("--texture-quality", type=int, default=None,
                    help="JPG quality 0-100 (default: 70)")
    p.add_argument("--force-retranscode", action="store_true",
                    help="Re-encode source images even when they could be copied")
    p.add_argument("--mesh-format", choices=MESH_FORMATS, default=None,
                    help="Mesh format (default: glb)")
    p.add_argument("--uniform-scale", type=float, default=None,
                    help="Scale applied to every position and scale (default: 1)")
    p.add_argument("--merge-policy", choices=MERGE_POLICIES, default=None,
                    help="Mesh grouping (default: per_object)")

    # --- Lightmaps ---
    p.add_argument("--lightmap-mode", choices=LIGHTMAP_MODES, default=None,
                    help="Lightmap export mode (default: packed)")
    p.add_argument("--lightmap-max-resolution", type=int, default=None,
                    help="Largest baked lightmap size (default: 2048)")
    p.add_argument("--lightmap-fstops", type=float, default=None,
                    help="Relative exposure in f-stops applied when decoding lightmaps (default: 0)")
    p.add_argument("--lmap-scale-range", choices=["signed", "unit"], default=None,
                    help="Clamp lmap_sca to [-2,2] (signed) or [0,1] (unit)")

    # --- Materials / skybox / policy ---
    p.add_argument("--no-materials", action="store_true", help="Do not export material textures or colours")
    p.add_argument("--no-material-colors", action="store_true",
                    help="Keep flat colours as col= instead of generating colour images")
    p.add_argument("--no-skybox", action="store_true", help="Do not export the skybox")
    p.add_argument("--skybox-resolution", type=int, default=None,
                    help="Face size for procedural skyboxes (default: 1024)")
    p.add_argument("--include-inactive", action="store_true", help="Export inactive objects too")
    p.add_argument("--export-dynamic", action="store_true", help="Export non-static objects too")
    p.add_argument("--html-only", action="store_true",
                    help="Only rewrite the document; reuse previously written assets")

    return p


def config_from_args(args: argparse.Namespace) -> ExportConfig:
    """Build an ExportConfig from parsed CLI arguments (over an optional JSON file)."""
    config = ExportConfig.from_json(args.config) if args.config else ExportConfig()

    if args.export_dir is not None:
        config.export_dir = args.export_dir
    if args.title is not None:
        config.title = args.title
    if args.texture_format is not None:
        config.texture_format = args.texture_format
    if args.texture_quality is not None:
        config.texture_quality = args.texture_quality
    if args.force_retranscode:
        config.force_retranscode = True
    if args.mesh_format is not None:
        config.mesh_format = args.mesh_format
    if args.uniform_scale is not None:
        config.uniform_scale = args.uniform_scale
    if args.merge_policy is not None:
        config.merge_policy = args.merge_policy

    if args.lightmap_mode is not None:
        config.lightmap_mode = args.lightmap_mode
    if args.lightmap_max_resolution is not None:
        config.lightmap_max_resolution = args.lightmap_max_resolution
    if args.lightmap_fstops is not None:
        config.lightmap_rel_fstops = args.lightmap_fstops
    if args.lmap_scale_range == "signed":
        config.lmap_scale_range = LMAP_SCALE_SIGNED
    elif args.lmap_scale_range == "unit":
        config.lmap_scale_range = LMAP_SCALE_UNIT

    if args.no_materials:
        config.export_materials = False
    if args.no_material_colors:
        config.export_material_colors = False
    if args.no_skybox:
        config.export_skybox = False
    if args.skybox_resolution is not None:
        config.skybox_resolution = args.skybox_resolution
    if args.include_inactive:
        config.ignore_inactive = False
    if args.export_dynamic:
        config.export_dynamic = True
    if args.html_only:
        config.html_only = True

    return config.resolve()


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        config = config_from_args(args)
        scene = load_scene(
            args.scene,
            prefer_source_lightmaps=config.lightmap_mode == LIGHTMAP_PACKED_SOURCE_EXR,
        )
        session = ExportSession(config=config, scene=scene)
        run_pipeline(session, stages=args.stages)
    except (ConfigurationError, ExportStageError) as e:
        logger.error("%s", e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
