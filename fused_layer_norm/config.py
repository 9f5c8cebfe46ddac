"""Build configuration for the fused layer-norm kernel.

Everything the build reads from the process environment is captured once in a
`BuildConfig`, which is then passed explicitly through detection, catalog
validation, compilation and linking. Nothing downstream reads `os.environ`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

# [CHOICE] architecture override
# [NOTES] e.g. CUDA_COMPUTE_CAP=86 skips the nvidia-smi query entirely.
COMPUTE_CAP_ENV = "CUDA_COMPUTE_CAP"

BUILD_DIR_ENV = "FUSED_LN_BUILD_DIR"
KERNEL_SOURCE_ENV = "FUSED_LN_KERNEL_SOURCE"
NVCC_ENV = "FUSED_LN_NVCC"
NVIDIA_SMI_ENV = "FUSED_LN_NVIDIA_SMI"

EXTENSION_NAME = "fused_layer_norm"

# Fixed artifact names inside the scratch directory.
OBJECT_FILE = "ln_api.o"
LIBRARY_NAME = "layernorm"
ARCHIVE_FILE = f"lib{LIBRARY_NAME}.a"
STAMP_FILE = "build_stamp.json"


def _package_dir() -> Path:
    return Path(__file__).resolve().parent


def default_kernel_source() -> Path:
    """Location of the layer-norm kernel when no override is given."""
    return _package_dir() / "csrc" / "layer_norm" / "ln_api.cu"


def default_build_dir(*, verbose: bool = False) -> Path:
    """Torch's extension build directory for this extension.

    Shared with any other torch JIT extension cache, so artifacts survive
    across processes the same way `torch.utils.cpp_extension.load` ones do.
    """
    import torch.utils.cpp_extension as ce

    return Path(ce._get_build_directory(EXTENSION_NAME, verbose=verbose))


@dataclass(frozen=True)
class BuildConfig:
    """Inputs to one run of the kernel build."""

    build_dir: Path
    kernel_source: Path = field(default_factory=default_kernel_source)

    # Raw override string; parsed (and validated) by the capability detector.
    compute_cap_override: Optional[str] = None

    nvcc: str = "nvcc"
    nvidia_smi: str = "nvidia-smi"

    # Snapshot of the environment used for SDK discovery.
    env: Mapping[str, str] = field(default_factory=dict)

    verbose: bool = False

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        *,
        build_dir: Optional[Path] = None,
        verbose: bool = False,
    ) -> "BuildConfig":
        """Capture a configuration from `env` (defaults to `os.environ`)."""
        env = dict(os.environ if env is None else env)

        if build_dir is None:
            raw_dir = env.get(BUILD_DIR_ENV)
            build_dir = Path(raw_dir) if raw_dir else default_build_dir(verbose=verbose)

        raw_src = env.get(KERNEL_SOURCE_ENV)
        kernel_source = Path(raw_src) if raw_src else default_kernel_source()

        return cls(
            build_dir=Path(build_dir),
            kernel_source=kernel_source,
            compute_cap_override=env.get(COMPUTE_CAP_ENV),
            nvcc=env.get(NVCC_ENV, "nvcc"),
            nvidia_smi=env.get(NVIDIA_SMI_ENV, "nvidia-smi"),
            env=env,
            verbose=verbose,
        )

    @property
    def object_path(self) -> Path:
        return self.build_dir / OBJECT_FILE

    @property
    def archive_path(self) -> Path:
        return self.build_dir / ARCHIVE_FILE

    @property
    def stamp_path(self) -> Path:
        return self.build_dir / STAMP_FILE

    def watched_sources(self) -> list[Path]:
        """The kernel source plus the headers next to it.

        Any change to one of these makes existing artifacts stale.
        """
        src = self.kernel_source
        headers: list[Path] = []
        if src.parent.is_dir():
            headers = sorted(p for pattern in ("*.cuh", "*.h") for p in src.parent.glob(pattern))
        return [src, *headers]


__all__ = [
    "BuildConfig",
    "COMPUTE_CAP_ENV",
    "BUILD_DIR_ENV",
    "KERNEL_SOURCE_ENV",
    "NVCC_ENV",
    "NVIDIA_SMI_ENV",
    "LIBRARY_NAME",
    "OBJECT_FILE",
    "ARCHIVE_FILE",
    "STAMP_FILE",
    "default_build_dir",
    "default_kernel_source",
]
