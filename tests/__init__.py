"""Test suite for the fused layer-norm build and dispatch.

Everything runs without a GPU: external tools are replaced by `tests.fakes`
and dispatch is checked on CPU tensors. Tests that need a real device are
skipped when CUDA is unavailable.
"""
