"""crossbuild - cross-compilation build orchestrator.

Provisions an aarch64 Linux cross-compiler, builds the project in ordered
stages, verifies the produced binaries and optionally deploys the package
to the device.
"""

__version__ = "0.1.0"
