"""Runtime entry points for the fused layer-norm kernel."""

from __future__ import annotations

from .dispatch import (
    KernelCallFrame,
    LayerNormOutputs,
    NumericTypeTag,
    fused_layer_norm,
    layer_norm,
    layer_norm_internal_type,
    prepare_layer_norm,
    rms_norm,
    round_multiple,
)

__all__ = [
    "KernelCallFrame",
    "LayerNormOutputs",
    "NumericTypeTag",
    "fused_layer_norm",
    "layer_norm",
    "layer_norm_internal_type",
    "prepare_layer_norm",
    "rms_norm",
    "round_multiple",
]
