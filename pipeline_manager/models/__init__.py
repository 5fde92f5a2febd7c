"""Data models for pipeline configuration and run state."""

from pipeline_manager.models.pipeline import (
    ImageSpec,
    PipelineConfig,
    PipelineRun,
    Stage,
    StageResult,
    StageStatus,
)

__all__ = [
    "ImageSpec",
    "PipelineConfig",
    "PipelineRun",
    "Stage",
    "StageResult",
    "StageStatus",
]
