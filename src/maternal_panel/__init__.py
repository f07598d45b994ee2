"""Mother-child panel construction from multi-wave household survey extracts."""

from .config import Config, ConfigError, load_config
from .pipeline import PipelineResult, build_panel, run_pipeline
from .quality import DataQualityLog, PipelineStateError

__all__ = [
    "Config",
    "ConfigError",
    "DataQualityLog",
    "PipelineResult",
    "PipelineStateError",
    "build_panel",
    "load_config",
    "run_pipeline",
]
