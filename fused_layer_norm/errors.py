"""Error taxonomy for building and invoking the fused layer-norm kernel.

Build-time errors (config, toolchain, parse, build) are fatal for the build
step: nothing retries them. `UnsupportedTypeError` is the only one reachable
from the hot path and is meant to be caught by callers that can fall back to a
different implementation.
"""

from __future__ import annotations

from typing import Sequence


class FusedLayerNormError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(FusedLayerNormError, ValueError):
    """Bad or inconsistent architecture selection, or a malformed override."""


class EmptyCatalogError(ConfigError):
    """The compiler reported no `sm_*` targets at all."""


class ArchitectureTooNewError(ConfigError):
    """The requested architecture is newer than anything the compiler can target."""


class UnsupportedArchitectureError(ConfigError):
    """The requested architecture is not in the compiler's target list."""


class ToolchainError(FusedLayerNormError, RuntimeError):
    """A required external tool is missing, cannot be spawned, or failed."""


class ParseError(FusedLayerNormError, RuntimeError):
    """An external tool produced output in an unexpected shape."""


class BuildError(FusedLayerNormError, RuntimeError):
    """The compiler or archiver exited with a non-zero status.

    Carries the full command line and the captured streams, since a failed
    `nvcc` run is otherwise opaque.
    """

    def __init__(
        self,
        stage: str,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.stage = stage
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"nvcc error while {stage} (exit status {returncode}).\n\n"
            f"Command:\n  {' '.join(self.command)}\n\n"
            f"# stdout\n{stdout}\n\n"
            f"# stderr\n{stderr}"
        )


class UnsupportedTypeError(FusedLayerNormError, TypeError):
    """A tensor dtype has no numeric type tag understood by the kernel."""

    def __init__(self, dtype: object) -> None:
        self.dtype = dtype
        super().__init__(f"dtype {dtype} is not supported by the fused layer-norm kernel")


__all__ = [
    "FusedLayerNormError",
    "ConfigError",
    "EmptyCatalogError",
    "ArchitectureTooNewError",
    "UnsupportedArchitectureError",
    "ToolchainError",
    "ParseError",
    "BuildError",
    "UnsupportedTypeError",
]
