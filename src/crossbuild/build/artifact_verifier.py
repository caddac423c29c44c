"""Post-build architecture verification.

Reads the ELF header of every produced binary (class, data encoding,
object type, machine) without executing it and compares it with what the
artifact is supposed to be. A host-architecture binary produced because
the native compiler slipped in is caught here.

Policy:
    - A mismatch on the primary executable fails the run
    - A mismatch on a secondary artifact (shared library) is a warning,
      unless strict mode promotes it to a failure
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from .stage import Artifact, ArtifactKind


@dataclass(frozen=True)
class ArchSpec:
    """ELF header values expected for an architecture tag."""

    machine: str
    elfclass: int
    little_endian: bool = True


ARCH_SPECS = {
    "aarch64": ArchSpec("EM_AARCH64", 64),
    "arm": ArchSpec("EM_ARM", 32),
    "x86_64": ArchSpec("EM_X86_64", 64),
    "x86": ArchSpec("EM_386", 32),
    "riscv64": ArchSpec("EM_RISCV", 64),
}

MACHINE_TAGS = {spec.machine: tag for tag, spec in ARCH_SPECS.items()}

# e_type values acceptable for each kind; PIE executables are ET_DYN
KIND_TYPES = {
    ArtifactKind.EXECUTABLE: ("ET_EXEC", "ET_DYN"),
    ArtifactKind.SHARED_LIBRARY: ("ET_DYN",),
}

TYPE_NAMES = {
    "ET_EXEC": "executable",
    "ET_DYN": "shared object",
    "ET_REL": "relocatable",
    "ET_CORE": "core file",
}

MACHO_MAGICS = {
    b"\xfe\xed\xfa\xce",
    b"\xfe\xed\xfa\xcf",
    b"\xce\xfa\xed\xfe",
    b"\xcf\xfa\xed\xfe",
    b"\xca\xfe\xba\xbe",
}


class VerificationStatus(Enum):
    """Aggregate verification outcome."""

    VERIFIED = "verified"
    VERIFIED_WITH_WARNINGS = "verified_with_warnings"
    FAILED = "failed"


@dataclass
class VerificationResult:
    """Outcome of verifying one artifact."""

    artifact: Artifact
    passed: bool
    observed: str


@dataclass
class VerificationSummary:
    """Verification outcome of all artifacts of a run."""

    results: list[VerificationResult] = field(default_factory=list)
    strict: bool = False

    @property
    def failures(self) -> list[VerificationResult]:
        """Mismatches that fail the run."""
        return [r for r in self.results if not r.passed and (r.artifact.primary or self.strict)]

    @property
    def warnings(self) -> list[VerificationResult]:
        """Mismatches downgraded to warnings."""
        return [r for r in self.results if not r.passed and not r.artifact.primary and not self.strict]

    @property
    def status(self) -> VerificationStatus:
        if self.failures:
            return VerificationStatus.FAILED
        if self.warnings:
            return VerificationStatus.VERIFIED_WITH_WARNINGS
        return VerificationStatus.VERIFIED


def describe_elf(path: Path) -> tuple[Optional[dict], str]:
    """Read the ELF header of a file.

    Args:
        path: File to inspect

    Returns:
        Tuple of (header fields or None, human readable description)
    """
    try:
        with open(path, "rb") as f:
            magic = f.read(4)
            f.seek(0)
            if magic != b"\x7fELF":
                if magic in MACHO_MAGICS:
                    return None, "Mach-O binary (built with the host compiler?)"
                return None, "not an ELF file"
            elf = ELFFile(f)
            fields = {
                "elfclass": elf.elfclass,
                "little_endian": elf.little_endian,
                "e_type": elf.header["e_type"],
                "e_machine": elf.header["e_machine"],
            }
    except FileNotFoundError:
        return None, "file not found"
    except (ELFError, OSError) as e:
        return None, f"unreadable ELF header: {e}"

    machine = fields["e_machine"]
    arch = MACHINE_TAGS.get(machine, str(machine))
    description = (
        f"ELF {fields['elfclass']}-bit {'LSB' if fields['little_endian'] else 'MSB'} "
        f"{TYPE_NAMES.get(fields['e_type'], fields['e_type'])}, {arch}"
    )
    return fields, description


class ArtifactVerifier:
    """Checks produced binaries against their expected kind and architecture."""

    def __init__(self, strict: bool = False):
        """Initialize the verifier.

        Args:
            strict: Treat secondary-artifact mismatches as failures
        """
        self.strict = strict

    def verify(self, artifact: Artifact) -> VerificationResult:
        """Verify a single artifact."""
        if artifact.unmatched_pattern is not None:
            return VerificationResult(
                artifact=artifact, passed=False, observed=f"no files match {artifact.unmatched_pattern}"
            )

        fields, observed = describe_elf(artifact.path)
        if fields is None:
            return VerificationResult(artifact=artifact, passed=False, observed=observed)

        spec = ARCH_SPECS.get(artifact.arch)
        if spec is None:
            return VerificationResult(
                artifact=artifact,
                passed=False,
                observed=f"{observed} (no ELF mapping for expected architecture '{artifact.arch}')",
            )

        passed = (
            fields["e_machine"] == spec.machine
            and fields["elfclass"] == spec.elfclass
            and fields["little_endian"] == spec.little_endian
            and fields["e_type"] in KIND_TYPES[artifact.kind]
        )
        return VerificationResult(artifact=artifact, passed=passed, observed=observed)

    def verify_all(self, artifacts: Iterable[Artifact]) -> VerificationSummary:
        """Verify every artifact and aggregate the outcome."""
        summary = VerificationSummary(strict=self.strict)
        for artifact in artifacts:
            result = self.verify(artifact)
            summary.results.append(result)
            expected = f"{artifact.arch} {artifact.kind.value}"
            if result.passed:
                logging.info(f"Verified {artifact.path.name}: {result.observed}")
            elif artifact.primary or self.strict:
                logging.error(
                    f"Architecture mismatch for {artifact.path}: expected {expected}, got {result.observed}"
                )
            else:
                logging.warning(
                    f"{artifact.path} may not be the correct architecture: "
                    f"expected {expected}, got {result.observed}"
                )
        return summary
