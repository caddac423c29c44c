"""Failure taxonomy shared by all pipeline components."""

from enum import Enum


class FailureKind(Enum):
    """Classification of a fatal (or downgraded) pipeline outcome."""

    TOOLCHAIN_ABSENT = "toolchain_absent"
    UNSUPPORTED_HOST = "unsupported_host"
    PROVISION_FAILED = "provision_failed"
    STAGE_EXECUTION_FAILED = "stage_execution_failed"
    STAGE_ARTIFACT_MISSING = "stage_artifact_missing"
    ARCHITECTURE_MISMATCH = "architecture_mismatch"
    DEPLOYMENT_UNREACHABLE = "deployment_unreachable"
    DEPLOYMENT_FAILED = "deployment_failed"
    CONFIGURATION = "configuration"

    @property
    def label(self) -> str:
        """Human readable name, e.g. 'StageArtifactMissing'."""
        return "".join(part.capitalize() for part in self.value.split("_"))
