"""Compile the layer-norm kernel into a static archive.

Two-stage pipeline, both stages run through `nvcc`:
  1. ln_api.cu -> ln_api.o        (device code for one sm_<id>)
  2. ln_api.o  -> liblayernorm.a  (`nvcc --lib`)

Stage 2 only runs after stage 1 exits cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from fused_layer_norm.build.tools import ToolRunner
from fused_layer_norm.config import BuildConfig
from fused_layer_norm.console import console
from fused_layer_norm.errors import BuildError, ConfigError

# The kernel uses half/bfloat16 operators and conversions, which the CUDA
# headers hide behind these macros in some configurations. They must be undefined.
HALF_PRECISION_FLAGS = (
    "-U__CUDA_NO_HALF_OPERATORS__",
    "-U__CUDA_NO_HALF_CONVERSIONS__",
    "-U__CUDA_NO_BFLOAT16_OPERATORS__",
    "-U__CUDA_NO_BFLOAT16_CONVERSIONS__",
    "-U__CUDA_NO_BFLOAT162_OPERATORS__",
    "-U__CUDA_NO_BFLOAT162_CONVERSIONS__",
)


@dataclass(frozen=True, slots=True)
class BuildArtifacts:
    object_file: Path
    archive: Path


def compile_command(
    config: BuildConfig,
    compute_cap: int,
    *,
    include_dir: Optional[Path] = None,
) -> list[str]:
    """nvcc invocation compiling the kernel source for `sm_<compute_cap>`."""
    cmd = [
        config.nvcc,
        "-std=c++17",
        "-O3",
        *HALF_PRECISION_FLAGS,
        f"--gpu-architecture=sm_{compute_cap}",
        "-c",
        "-o",
        str(config.object_path),
        "--default-stream",
        "per-thread",
        "--expt-relaxed-constexpr",
        "--expt-extended-lambda",
        "--use_fast_math",
        # position independent host code, the archive is linked into an extension module
        "-Xcompiler",
        "-fPIC",
    ]
    if include_dir is not None:
        cmd += ["-I", str(include_dir)]
    cmd.append(str(config.kernel_source))
    return cmd


def archive_command(config: BuildConfig) -> list[str]:
    """`nvcc --lib` folding the object file into the static archive."""
    return [config.nvcc, "--lib", "-o", str(config.archive_path), str(config.object_path)]


def run_stage(runner: ToolRunner, stage: str, cmd: Sequence[str], *, verbose: bool = False) -> None:
    """Run one nvcc invocation; raise BuildError on a non-zero exit."""
    if verbose:
        console.command(cmd)
    out = runner(cmd)
    if not out.ok:
        raise BuildError(stage, cmd, out.returncode, out.stdout, out.stderr)


def build_kernel(
    config: BuildConfig,
    compute_cap: int,
    runner: ToolRunner,
    *,
    include_dir: Optional[Path] = None,
) -> BuildArtifacts:
    """Compile and archive the kernel for `compute_cap`.

    `compute_cap` must already be validated against the toolchain catalog.
    """
    if not config.kernel_source.is_file():
        raise ConfigError(
            f"layer-norm kernel source not found at {config.kernel_source}. "
            "Set FUSED_LN_KERNEL_SOURCE to the path of ln_api.cu."
        )
    config.build_dir.mkdir(parents=True, exist_ok=True)

    run_stage(
        runner,
        "compiling",
        compile_command(config, compute_cap, include_dir=include_dir),
        verbose=config.verbose,
    )
    run_stage(runner, "archiving", archive_command(config), verbose=config.verbose)

    return BuildArtifacts(object_file=config.object_path, archive=config.archive_path)


__all__ = [
    "BuildArtifacts",
    "HALF_PRECISION_FLAGS",
    "archive_command",
    "build_kernel",
    "compile_command",
    "run_stage",
]
