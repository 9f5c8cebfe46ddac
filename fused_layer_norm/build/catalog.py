"""Architectures the installed `nvcc` can target.

`nvcc --list-gpu-code` prints one code per line (`sm_80`, `sm_90a`, ...).
Unlike the `nvidia-smi` query, parsing here is tolerant: lines that are not a
plain `sm_<number>` are skipped, because the list legitimately carries
variants and other codes we never target.
"""

from __future__ import annotations

from dataclasses import dataclass

from fused_layer_norm.build.tools import ToolRunner
from fused_layer_norm.config import BuildConfig
from fused_layer_norm.console import console
from fused_layer_norm.errors import (
    ArchitectureTooNewError,
    EmptyCatalogError,
    ToolchainError,
    UnsupportedArchitectureError,
)

SM_MARKER = "sm"


@dataclass(frozen=True, slots=True)
class ToolchainCatalog:
    codes: frozenset[int]

    @property
    def max_code(self) -> int:
        if not self.codes:
            raise EmptyCatalogError("nvcc reported no sm_* gpu codes")
        return max(self.codes)

    def __contains__(self, code: object) -> bool:
        return code in self.codes

    def validate(self, compute_cap: int) -> int:
        """Return `compute_cap` if nvcc can target it, else raise a ConfigError.

        The three failures are reported separately. "Too new" is checked
        before membership so it is distinguishable from a plain gap in the
        target list.
        """
        if not self.codes:
            raise EmptyCatalogError(
                "nvcc reported no sm_* gpu codes. Ensure that a working CUDA toolkit is installed."
            )
        if compute_cap > self.max_code:
            raise ArchitectureTooNewError(
                f"CUDA compute cap {compute_cap} is higher than the highest gpu code from nvcc {self.max_code}"
            )
        if compute_cap not in self.codes:
            raise UnsupportedArchitectureError(
                f"nvcc cannot target gpu arch {compute_cap}. Available nvcc targets are {sorted(self.codes)}."
            )
        return compute_cap


def parse_gpu_codes(stdout: str) -> frozenset[int]:
    """Architecture ids from `nvcc --list-gpu-code`; lines not shaped `sm_<int>` are skipped."""
    codes: set[int] = set()
    for line in stdout.splitlines():
        parts = line.strip().split("_")
        if SM_MARKER not in parts or len(parts) < 2:
            continue
        try:
            codes.add(int(parts[1]))
        except ValueError:
            continue
    return frozenset(codes)


def query_catalog(config: BuildConfig, runner: ToolRunner) -> ToolchainCatalog:
    """Ask nvcc which `sm_<id>` targets it can compile for."""
    cmd = [config.nvcc, "--list-gpu-code"]
    if config.verbose:
        console.command(cmd)
    out = runner(cmd)
    if not out.ok:
        raise ToolchainError(
            f"`{config.nvcc} --list-gpu-code` failed (exit status {out.returncode}). "
            "Ensure that you have CUDA installed and that `nvcc` is in your PATH.\n"
            f"{out.stderr}"
        )
    return ToolchainCatalog(codes=parse_gpu_codes(out.stdout))


__all__ = ["ToolchainCatalog", "parse_gpu_codes", "query_catalog"]
