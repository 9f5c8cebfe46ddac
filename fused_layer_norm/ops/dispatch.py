"""Host-side dispatch into the compiled `run_ln` kernel entry point.

The foreign call takes raw device addresses and is not checked on the other
side, so everything that can be checked is checked here: dtypes map to kernel
type tags, shapes and contiguity are validated, outputs are allocated, and the
hidden size is padded to the width the kernel vectorizes over. Only then is
`KernelCallFrame.invoke` handed the addresses, and only for the duration of
that call.

Nothing in this module holds mutable state; it is safe to call from several
host threads at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional

import torch

from fused_layer_norm.errors import UnsupportedTypeError

# [CHOICE] kernel vector width (elements)
# [NOTES] rows are loaded 8 elements at a time, so cols must divide evenly.
VECTOR_WIDTH = 8
MAX_HIDDEN_SIZE = 8192


class NumericTypeTag(IntEnum):
    F16 = 0
    BF16 = 1
    F32 = 2


_DTYPE_TAGS: dict[torch.dtype, NumericTypeTag] = {
    torch.float16: NumericTypeTag.F16,
    torch.bfloat16: NumericTypeTag.BF16,
    torch.float32: NumericTypeTag.F32,
}

SUPPORTED_DTYPES = tuple(_DTYPE_TAGS)


def layer_norm_internal_type(dtype: torch.dtype) -> NumericTypeTag:
    """Kernel type tag for `dtype`; anything outside f16/bf16/f32 is rejected."""
    try:
        return _DTYPE_TAGS[dtype]
    except (KeyError, TypeError):
        raise UnsupportedTypeError(dtype) from None


def round_multiple(x: int, m: int) -> int:
    """Smallest multiple of `m` that is >= `x`."""
    if m <= 0:
        raise ValueError(f"multiple must be positive, got {m}")
    return (x + m - 1) // m * m


def hidden_size_multiple(cols: int) -> int:
    if cols <= 1536:
        return 256
    if cols <= 3072:
        return 512
    return 1024


def padded_hidden_size(cols: int) -> int:
    if cols <= 0 or cols % VECTOR_WIDTH != 0:
        raise ValueError(f"hidden size must be a positive multiple of {VECTOR_WIDTH}, got {cols}")
    if cols > MAX_HIDDEN_SIZE:
        raise ValueError(f"hidden size {cols} exceeds the kernel limit of {MAX_HIDDEN_SIZE}")
    return round_multiple(cols, hidden_size_multiple(cols))


@dataclass(frozen=True, slots=True)
class KernelCallFrame:
    """Arguments of `run_ln`, in declaration order.

    Addresses are plain integers (0 for an absent optional buffer) and belong to
    the caller; the kernel neither frees nor keeps them.
    """

    x: int
    residual: int
    gamma: int
    beta: int
    dst_add: int
    dst: int
    mu: int
    rsigma: int

    epsilon: float

    hidden_size_rounded: int
    rows: int
    cols: int
    multi_processor_count: int

    wtype: NumericTypeTag
    itype: NumericTypeTag
    rtype: NumericTypeTag
    otype: NumericTypeTag
    ctype: NumericTypeTag

    is_rms_norm: bool

    def args(self) -> tuple[Any, ...]:
        return (
            self.x,
            self.residual,
            self.gamma,
            self.beta,
            self.dst_add,
            self.dst,
            self.mu,
            self.rsigma,
            float(self.epsilon),
            self.hidden_size_rounded,
            self.rows,
            self.cols,
            self.multi_processor_count,
            int(self.wtype),
            int(self.itype),
            int(self.rtype),
            int(self.otype),
            int(self.ctype),
            int(self.is_rms_norm),
        )

    def invoke(self, fn: Callable[..., None]) -> None:
        # run_ln returns nothing; device-side failures surface through the
        # CUDA error state, not here.
        fn(*self.args())


@dataclass(frozen=True)
class LayerNormOutputs:
    dst: torch.Tensor
    mu: torch.Tensor
    rsigma: torch.Tensor
    # x + residual, only produced when a residual is given
    dst_add: Optional[torch.Tensor] = None


def _addr(t: Optional[torch.Tensor]) -> int:
    return 0 if t is None else int(t.data_ptr())


def _check_contiguous(name: str, t: torch.Tensor) -> None:
    if not t.is_contiguous():
        raise ValueError(f"{name} must be contiguous")


def prepare_layer_norm(
    x: torch.Tensor,
    gamma: torch.Tensor,
    beta: Optional[torch.Tensor] = None,
    *,
    residual: Optional[torch.Tensor] = None,
    eps: float = 1e-5,
    is_rms_norm: bool = False,
    multi_processor_count: int = 1,
) -> tuple[KernelCallFrame, LayerNormOutputs]:
    """Validate inputs, allocate outputs and assemble the call frame.

    `x` is treated as (rows, cols) with cols = x.shape[-1]; leading dims are
    flattened. Outputs live on x's device.
    """
    if x.dim() < 1:
        raise ValueError("x must have at least one dimension")
    cols = int(x.shape[-1])
    rows = x.numel() // cols if cols else 0

    itype = layer_norm_internal_type(x.dtype)
    wtype = layer_norm_internal_type(gamma.dtype)
    rtype = itype if residual is None else layer_norm_internal_type(residual.dtype)

    if tuple(gamma.shape) != (cols,):
        raise ValueError(f"gamma must have shape ({cols},), got {tuple(gamma.shape)}")
    if beta is not None:
        if tuple(beta.shape) != (cols,):
            raise ValueError(f"beta must have shape ({cols},), got {tuple(beta.shape)}")
        if beta.dtype != gamma.dtype:
            raise ValueError(f"beta dtype {beta.dtype} does not match gamma dtype {gamma.dtype}")
    if residual is not None and residual.shape != x.shape:
        raise ValueError(f"residual shape {tuple(residual.shape)} does not match x shape {tuple(x.shape)}")

    named = {"x": x, "gamma": gamma, "beta": beta, "residual": residual}
    for name, t in named.items():
        if t is None:
            continue
        _check_contiguous(name, t)
        if t.device != x.device:
            raise ValueError(f"{name} is on {t.device}, expected {x.device}")

    hidden_size_rounded = padded_hidden_size(cols)
    if rows <= 0 or rows > 0xFFFFFFFF:
        raise ValueError(f"row count {rows} is out of range for the kernel")

    dst = torch.empty_like(x)
    dst_add = None if residual is None else torch.empty_like(residual)
    mu = torch.empty(rows, dtype=torch.float32, device=x.device)
    rsigma = torch.empty(rows, dtype=torch.float32, device=x.device)

    frame = KernelCallFrame(
        x=_addr(x),
        residual=_addr(residual),
        gamma=_addr(gamma),
        beta=_addr(beta),
        dst_add=_addr(dst_add),
        dst=_addr(dst),
        mu=_addr(mu),
        rsigma=_addr(rsigma),
        epsilon=float(eps),
        hidden_size_rounded=hidden_size_rounded,
        rows=rows,
        cols=cols,
        multi_processor_count=int(multi_processor_count),
        wtype=wtype,
        itype=itype,
        rtype=rtype,
        otype=itype,
        ctype=NumericTypeTag.F32,
        is_rms_norm=bool(is_rms_norm),
    )
    return frame, LayerNormOutputs(dst=dst, mu=mu, rsigma=rsigma, dst_add=dst_add)


def fused_layer_norm(
    x: torch.Tensor,
    gamma: torch.Tensor,
    beta: Optional[torch.Tensor] = None,
    *,
    residual: Optional[torch.Tensor] = None,
    eps: float = 1e-5,
    is_rms_norm: bool = False,
    run_ln: Optional[Callable[..., None]] = None,
) -> LayerNormOutputs:
    """Run the fused kernel on CUDA tensors.

    `run_ln` defaults to the entry point of the JIT-built extension module.
    """
    if not x.is_cuda:
        raise ValueError(f"fused layer norm requires CUDA tensors, got x on {x.device}")

    multi_processor_count = torch.cuda.get_device_properties(x.device).multi_processor_count
    frame, outputs = prepare_layer_norm(
        x,
        gamma,
        beta,
        residual=residual,
        eps=eps,
        is_rms_norm=is_rms_norm,
        multi_processor_count=multi_processor_count,
    )
    if run_ln is None:
        from fused_layer_norm.ops.jit import load_layer_norm_ops

        run_ln = load_layer_norm_ops().run_ln

    with torch.cuda.device(x.device):
        frame.invoke(run_ln)
    return outputs


def layer_norm(
    x: torch.Tensor,
    gamma: torch.Tensor,
    beta: Optional[torch.Tensor] = None,
    eps: float = 1e-5,
) -> torch.Tensor:
    return fused_layer_norm(x, gamma, beta, eps=eps).dst


def rms_norm(x: torch.Tensor, gamma: torch.Tensor, eps: float = 1e-6) -> torch.Tensor:
    return fused_layer_norm(x, gamma, None, eps=eps, is_rms_norm=True).dst


__all__ = [
    "KernelCallFrame",
    "LayerNormOutputs",
    "MAX_HIDDEN_SIZE",
    "NumericTypeTag",
    "SUPPORTED_DTYPES",
    "VECTOR_WIDTH",
    "fused_layer_norm",
    "hidden_size_multiple",
    "layer_norm",
    "layer_norm_internal_type",
    "padded_hidden_size",
    "prepare_layer_norm",
    "rms_norm",
    "round_multiple",
]
