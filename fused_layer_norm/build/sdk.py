"""CUDA SDK include-tree discovery."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Mapping

from fused_layer_norm.errors import ToolchainError

SDK_ENV_VARS = (
    "CUDA_PATH",
    "CUDA_ROOT",
    "CUDA_TOOLKIT_ROOT_DIR",
    "CUDNN_LIB",
)

SDK_ROOTS = (
    "/usr",
    "/usr/local/cuda",
    "/opt/cuda",
    "/usr/lib/cuda",
    "C:/Program Files/NVIDIA GPU Computing Toolkit",
    "C:/CUDA",
)


def candidate_roots(env: Mapping[str, str]) -> Iterator[Path]:
    """Env hints first (in order), then the well-known install prefixes."""
    for name in SDK_ENV_VARS:
        value = env.get(name)
        if value:
            yield Path(value)
    for root in SDK_ROOTS:
        yield Path(root)


def find_cuda_include_dir(env: Mapping[str, str]) -> Path:
    for root in candidate_roots(env):
        if (root / "include" / "cuda.h").is_file():
            return root / "include"
    raise ToolchainError(
        "cannot find include/cuda.h. Set one of "
        + ", ".join(SDK_ENV_VARS)
        + " to the CUDA toolkit root."
    )


__all__ = ["SDK_ENV_VARS", "SDK_ROOTS", "candidate_roots", "find_cuda_include_dir"]
