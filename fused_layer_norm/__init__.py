"""Fused layer-norm / RMS-norm CUDA kernel: build orchestration and dispatch.

Importing this package does not touch the CUDA toolchain. The kernel is built
on first use (`fused_layer_norm.ops.jit.load_layer_norm_ops`) or ahead of time
with `fused-ln-build`.
"""

from __future__ import annotations

from .errors import (
    BuildError,
    ConfigError,
    FusedLayerNormError,
    ParseError,
    ToolchainError,
    UnsupportedTypeError,
)
from .ops import fused_layer_norm, layer_norm, rms_norm

__version__ = "0.1.0"

__all__ = [
    "BuildError",
    "ConfigError",
    "FusedLayerNormError",
    "ParseError",
    "ToolchainError",
    "UnsupportedTypeError",
    "fused_layer_norm",
    "layer_norm",
    "rms_norm",
]
