"""
Configuration management for polymask.

Loads YAML configuration with sensible defaults for every engine component.
"""

import os
from dataclasses import asdict, dataclass, field, fields

import yaml


@dataclass
class BoundaryConfig:
    """Configuration for raster boundary extraction."""
    threshold: float = 0.5
    ordering: str = "angular"  # "angular", "contour" or "trace"
    trace_epsilon: float = 2.0  # RDP tolerance for "trace", raster pixels


@dataclass
class ColorSelectionConfig:
    """Configuration for flood-fill colour selection."""
    tolerance: float = 0.1
    max_points: int = 32
    min_points: int = 6
    max_points_limit: int = 128
    min_region_pixels: int = 9
    simplify_epsilon: float = 1.0  # 0 disables the simplification pass


@dataclass
class DetectionConfig:
    """Configuration for detection output decoding."""
    target_size: int = 640
    confidence_threshold: float = 0.25
    nms_threshold: float = 0.45
    target_point_count: int = 25
    min_points: int = 3
    max_points: int = 50
    expansion_percent: float = 10.0
    dedupe_distance: float = 0.5
    final_dedupe_distance: float = 0.1


@dataclass
class RasterConfig:
    """Configuration for mask rasterization."""
    antialias: bool = True


@dataclass
class TracingConfig:
    """Configuration for runtime tracing."""
    enabled: bool = False
    level: str = "INFO"
    file_path: str = None
    json_output: bool = False


@dataclass
class DebugConfig:
    """Configuration for debug artifact generation."""
    enabled: bool = False
    max_edge_scale: int = 1600


@dataclass
class EngineConfig:
    """Complete engine configuration."""
    boundary: BoundaryConfig = field(default_factory=BoundaryConfig)
    color_selection: ColorSelectionConfig = field(default_factory=ColorSelectionConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    raster: RasterConfig = field(default_factory=RasterConfig)
    tracing: TracingConfig = field(default_factory=TracingConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)


SECTIONS = [f.name for f in fields(EngineConfig)]


def load_config(config_path=None):
    """
    Load configuration from YAML file.

    Falls back to defaults for any missing values.
    """
    config = EngineConfig()

    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}

        config = _merge_config(config, yaml_data)

    return config


def _merge_config(config, yaml_data):
    """Merge YAML data into config dataclass, ignoring unknown keys."""
    for section_name in SECTIONS:
        values = yaml_data.get(section_name)
        if not isinstance(values, dict):
            continue
        section = getattr(config, section_name)
        for key, value in values.items():
            if hasattr(section, key):
                setattr(section, key, value)

    return config


def save_default_config(path):
    """Save default configuration to YAML file for reference."""
    yaml_data = asdict(EngineConfig())
    # File output is a per-run choice, not a stored default
    yaml_data["tracing"].pop("file_path", None)

    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(yaml_data, f, default_flow_style=False, sort_keys=False)
