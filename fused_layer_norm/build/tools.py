"""External tool invocation.

Every call to `nvidia-smi` or `nvcc` goes through a `ToolRunner`. The real
runner spawns a subprocess; tests pass a fake that returns canned output, which
is the only way the build can be exercised on a machine without the CUDA
toolchain.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import Protocol, Sequence

from fused_layer_norm.errors import ToolchainError


@dataclass(frozen=True, slots=True)
class ToolOutput:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ToolRunner(Protocol):
    def __call__(self, cmd: Sequence[str]) -> ToolOutput:
        """Run `cmd` to completion and return its exit status and output.

        Raises ToolchainError if the executable cannot be found or spawned.
        A non-zero exit status is *not* an error at this level.
        """
        ...


class SubprocessRunner:
    """Runs tools with `subprocess.run`, capturing both streams as text."""

    def __call__(self, cmd: Sequence[str]) -> ToolOutput:
        argv = [str(c) for c in cmd]
        if not argv:
            raise ValueError("empty command")
        if shutil.which(argv[0]) is None:
            raise ToolchainError(
                f"`{argv[0]}` was not found on PATH.\n"
                "Ensure that the CUDA toolkit and driver are installed and that their "
                "binaries (`nvcc`, `nvidia-smi`) are in your PATH."
            )
        try:
            proc = subprocess.run(argv, capture_output=True, text=True, errors="replace")
        except OSError as e:
            raise ToolchainError(f"failed spawning `{argv[0]}`: {e}") from e
        return ToolOutput(returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


__all__ = ["ToolOutput", "ToolRunner", "SubprocessRunner"]
