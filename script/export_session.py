"""
Export session: the explicit context passed to every pipeline stage.

A session owns one registry and the intermediate results of one export run,
so nothing is shared between runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from asset_registry import AssetMesh, AssetRegistry
from export_config import ExportConfig
from image_encoder import ImageEncoder
from lightmap_pipeline import LightmapStrategy, create_strategy
from mesh_encoder import MeshEncoder, create_mesh_encoder
from mesh_merge import MergeGroup
from scene_model import Color, Material, Scene, Transform, Vec4
from scene_walker import ComponentExtractor, LinkExtractor, LinkObject, ProbeRecord, SceneObject
from texture_baking import SoftwareBaker, TextureBakingService


@dataclass(eq=False)
class RoomObject:
    """One ``<Object>`` element.

    ``id`` is the mesh id (several room objects may share a mesh);
    ``name`` is unique per session and names per-object baked images.
    """

    id: str
    name: str
    mesh: AssetMesh
    transform: Transform
    members: List[SceneObject] = field(default_factory=list)
    atlas_space: bool = False
    lightmap_index: int = -1
    lightmap_scale_offset: Optional[Vec4] = None
    image_id: Optional[str] = None
    lightmap_id: Optional[str] = None
    color: Optional[Color] = None
    tiling: Optional[Vec4] = None
    has_collider: bool = False
    is_transparent: bool = False
    baked: bool = False

    @property
    def primary_material(self) -> Optional[Material]:
        return self.members[0].primary_material if self.members else None


@dataclass
class ExportSession:
    config: ExportConfig
    scene: Scene
    registry: AssetRegistry = field(default_factory=AssetRegistry)
    baker: TextureBakingService = field(default_factory=SoftwareBaker)
    image_encoder: ImageEncoder = field(default_factory=ImageEncoder)
    mesh_encoder: Optional[MeshEncoder] = None
    strategy: Optional[LightmapStrategy] = None
    extractors: List[ComponentExtractor] = field(default_factory=list)

    # --- Filled in by the stages ---
    objects: List[SceneObject] = field(default_factory=list)
    links: List[LinkObject] = field(default_factory=list)
    probes: List[ProbeRecord] = field(default_factory=list)
    far_plane_distance: float = 500.0
    groups: List[MergeGroup] = field(default_factory=list)
    room_objects: List[RoomObject] = field(default_factory=list)
    skybox_ids: Dict[str, str] = field(default_factory=dict)
    document: str = ""

    def __post_init__(self) -> None:
        if self.mesh_encoder is None:
            self.mesh_encoder = create_mesh_encoder(self.config.mesh_format)
        if self.strategy is None:
            # Chosen once per run; stages never re-check the mode per item
            self.strategy = create_strategy(self.config.lightmap_mode)
        if not self.extractors:
            self.extractors = [LinkExtractor()]
