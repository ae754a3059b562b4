"""Orchestrator module - drives tasks through the generation stages."""

from .context import Context, extract_code, tail_lines
from .daemon import Orchestrator
from .errors import (
    ArtifactWriteError,
    BudgetExhaustedError,
    ExtractionError,
    InfrastructureError,
    OracleUnavailableError,
    PipelineAbort,
    StageRegressionError,
    TaskVanishedError,
)
from .oracle import GenerationClient
from .pipeline import Attempt, PipelineSettings, StagePipeline
from .progress_store import DuplicateTaskError, ProgressStore, TaskRecord
from .quality_gate import QualityGate, QualityVerdict, VerdictParseError
from .stages import STAGE_SPECS, Stage, StageSpec, resolve_stage_sequence

__all__ = [
    'Context',
    'extract_code',
    'tail_lines',
    'Orchestrator',
    'ArtifactWriteError',
    'BudgetExhaustedError',
    'ExtractionError',
    'InfrastructureError',
    'OracleUnavailableError',
    'PipelineAbort',
    'StageRegressionError',
    'TaskVanishedError',
    'GenerationClient',
    'Attempt',
    'PipelineSettings',
    'StagePipeline',
    'DuplicateTaskError',
    'ProgressStore',
    'TaskRecord',
    'QualityGate',
    'QualityVerdict',
    'VerdictParseError',
    'STAGE_SPECS',
    'Stage',
    'StageSpec',
    'resolve_stage_sequence',
]
