from __future__ import annotations

from pathlib import Path

import pytest

from fused_layer_norm.config import BuildConfig


@pytest.fixture
def kernel_source(tmp_path: Path) -> Path:
    src_dir = tmp_path / "csrc" / "layer_norm"
    src_dir.mkdir(parents=True)
    src = src_dir / "ln_api.cu"
    src.write_text("// layer norm kernel\n", encoding="utf-8")
    (src_dir / "ln.h").write_text("#pragma once\n", encoding="utf-8")
    return src


@pytest.fixture
def cuda_root(tmp_path: Path) -> Path:
    root = tmp_path / "cuda"
    (root / "include").mkdir(parents=True)
    (root / "include" / "cuda.h").write_text("", encoding="utf-8")
    return root


@pytest.fixture
def make_config(tmp_path: Path, kernel_source: Path, cuda_root: Path):
    def _make(**overrides) -> BuildConfig:
        kwargs = dict(
            build_dir=tmp_path / "out",
            kernel_source=kernel_source,
            env={"CUDA_PATH": str(cuda_root)},
        )
        kwargs.update(overrides)
        return BuildConfig(**kwargs)

    return _make
