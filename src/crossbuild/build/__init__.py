"""
Build system components for crossbuild.

This module provides the build pipeline implementation including:
- Build stage and artifact models
- Stage execution with completion-marker caching
- ELF architecture verification
- Pipeline orchestration (crossbuild.build.orchestrator)
"""

from .artifact_verifier import (
    ArtifactVerifier,
    VerificationResult,
    VerificationStatus,
    VerificationSummary,
)
from .stage import Artifact, ArtifactKind, BuildEnvironment, BuildStage, StageRole
from .stage_cache import StageCache
from .staged_builder import StagedBuilder, StageError, StageResult

__all__ = [
    "Artifact",
    "ArtifactKind",
    "ArtifactVerifier",
    "BuildEnvironment",
    "BuildStage",
    "StageCache",
    "StageError",
    "StageResult",
    "StageRole",
    "StagedBuilder",
    "VerificationResult",
    "VerificationStatus",
    "VerificationSummary",
]
