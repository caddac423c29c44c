"""Shared fixtures for crossbuild tests."""

import struct
from pathlib import Path

import pytest

EM_X86_64 = 62
EM_AARCH64 = 183
EM_ARM = 40

ET_EXEC = 2
ET_DYN = 3


def make_elf(machine: int = EM_AARCH64, elf_type: int = ET_EXEC, bits: int = 64, little: bool = True) -> bytes:
    """Build a minimal valid ELF image: header plus one null section header."""
    order = "<" if little else ">"
    ident = struct.pack("4sBBBBB7s", b"\x7fELF", 2 if bits == 64 else 1, 1 if little else 2, 1, 0, 0, b"\x00" * 7)
    if bits == 64:
        ehsize, shentsize = 64, 64
        header = ident + struct.pack(
            order + "HHIQQQIHHHHHH",
            elf_type, machine, 1, 0, 0, ehsize, 0, ehsize, 0, 0, shentsize, 1, 0,
        )
    else:
        ehsize, shentsize = 52, 40
        header = ident + struct.pack(
            order + "HHIIIIIHHHHHH",
            elf_type, machine, 1, 0, 0, ehsize, 0, ehsize, 0, 0, shentsize, 1, 0,
        )
    return header + b"\x00" * shentsize


@pytest.fixture
def write_elf():
    """Return a helper that writes a minimal ELF file to a path."""

    def _write(path: Path, machine: int = EM_AARCH64, elf_type: int = ET_EXEC, bits: int = 64) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(make_elf(machine=machine, elf_type=elf_type, bits=bits))
        return path

    return _write
