"""Just-In-Time build and loading of the fused layer-norm extension.

First call in a process:
  1. Verify a CUDA device is present
  2. Run the build pipeline (a no-op when the build stamp still matches)
  3. Build `ln_binding.cpp` with `torch.utils.cpp_extension.load`, linking it
     against `liblayernorm.a` with the published link directives

Later calls return the cached module, or re-raise the cached error: a broken
toolchain fails once, loudly, instead of on every call. Both checks happen
before the lock is taken, so dispatch never waits on it once loading finished.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional

import torch

from fused_layer_norm.build.pipeline import BuildResult, run_build
from fused_layer_norm.build.tools import ToolRunner
from fused_layer_norm.config import BuildConfig, EXTENSION_NAME
from fused_layer_norm.console import console
from fused_layer_norm.errors import ToolchainError

_CACHED_MOD: Any | None = None
_CACHED_ERR: Exception | None = None
# Serializes the one-time build; two first callers must not run nvcc into one directory.
_LOCK = threading.Lock()

BINDING_SOURCE = Path(__file__).resolve().parent / "ln_binding.cpp"


def extension_cflags(result: BuildResult) -> list[str]:
    # torch only rebuilds when sources or flags change, not when a linked
    # archive does, so the archive's mtime is folded into the flags.
    stamp = result.artifacts.archive.stat().st_mtime_ns
    return ["-O3", f"-DFUSED_LN_ARCHIVE_STAMP={stamp}"]


def build_extension(config: BuildConfig, result: BuildResult, *, verbose: bool = False) -> Any:
    """Compile the pybind11 binding and link it against the kernel archive."""
    import torch.utils.cpp_extension as ce

    try:
        return ce.load(
            name=EXTENSION_NAME,
            sources=[str(BINDING_SOURCE)],
            extra_cflags=extension_cflags(result),
            extra_ldflags=result.directives.linker_args(),
            with_cuda=True,
            is_python_module=True,
            build_directory=str(config.build_dir),
            verbose=verbose,
        )
    except (RuntimeError, ImportError, OSError) as e:
        raise ToolchainError(
            f"failed building the layer-norm extension against {result.artifacts.archive}: {e}\n"
            "Run `fused-ln-build -v` to see the kernel build, or set verbose=True for the extension build."
        ) from e


def load_layer_norm_ops(
    *,
    config: Optional[BuildConfig] = None,
    runner: Optional[ToolRunner] = None,
    verbose: bool = False,
) -> Any:
    """Build (if needed) and load the kernel extension for this process."""
    global _CACHED_MOD, _CACHED_ERR

    if _CACHED_MOD is not None:
        return _CACHED_MOD
    if _CACHED_ERR is not None:
        raise _CACHED_ERR

    with _LOCK:
        # another thread may have finished while this one waited
        if _CACHED_MOD is not None:
            return _CACHED_MOD
        if _CACHED_ERR is not None:
            raise _CACHED_ERR

        try:
            if not torch.cuda.is_available():
                raise ToolchainError(
                    "CUDA is not available in this runtime; the fused layer-norm kernel needs an NVIDIA GPU."
                )
            if config is None:
                config = BuildConfig.from_env(verbose=verbose)
            result = run_build(config, runner)
            with console.spinner("building/loading layer-norm extension…"):
                mod = build_extension(config, result, verbose=verbose or config.verbose)
        except Exception as e:
            _CACHED_ERR = e
            raise

        _CACHED_MOD = mod
        return mod


def reset_cache() -> None:
    """Forget the loaded module and any cached failure."""
    global _CACHED_MOD, _CACHED_ERR
    with _LOCK:
        _CACHED_MOD = None
        _CACHED_ERR = None


__all__ = ["BINDING_SOURCE", "build_extension", "extension_cflags", "load_layer_norm_ops", "reset_cache"]
