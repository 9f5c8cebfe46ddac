from __future__ import annotations

import os
import threading

import pytest
import torch
import torch.utils.cpp_extension as ce

from fused_layer_norm.build.pipeline import run_build
from fused_layer_norm.errors import ToolchainError
from fused_layer_norm.ops import jit
from tests.fakes import healthy_runner


@pytest.fixture(autouse=True)
def _fresh_cache():
    jit.reset_cache()
    yield
    jit.reset_cache()


class _RecordingLoad:
    def __init__(self, module: object = None, error: Exception | None = None) -> None:
        self.module = object() if module is None else module
        self.error = error
        self.calls: list[dict] = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.module


def test_binding_source_declares_entry_point():
    text = jit.BINDING_SOURCE.read_text(encoding="utf-8")
    assert 'extern "C" void run_ln(' in text
    assert "PYBIND11_MODULE(TORCH_EXTENSION_NAME" in text
    assert '"run_ln"' in text


def test_extension_links_against_archive(monkeypatch, make_config):
    config = make_config()
    result = run_build(config, healthy_runner())
    load = _RecordingLoad()
    monkeypatch.setattr(ce, "load", load)

    assert jit.build_extension(config, result) is load.module

    (kwargs,) = load.calls
    assert kwargs["name"] == "fused_layer_norm"
    assert kwargs["sources"] == [str(jit.BINDING_SOURCE)]
    assert kwargs["extra_ldflags"] == result.directives.linker_args()
    assert kwargs["build_directory"] == str(config.build_dir)
    assert kwargs["is_python_module"] is True


def test_new_archive_changes_extension_flags(make_config):
    config = make_config()
    result = run_build(config, healthy_runner())
    before = jit.extension_cflags(result)

    st = result.artifacts.archive.stat()
    os.utime(result.artifacts.archive, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

    assert jit.extension_cflags(result) != before


def test_extension_build_failure_is_toolchain_error(monkeypatch, make_config):
    config = make_config()
    result = run_build(config, healthy_runner())
    cause = RuntimeError("Error building extension 'fused_layer_norm'")
    monkeypatch.setattr(ce, "load", _RecordingLoad(error=cause))

    with pytest.raises(ToolchainError, match="layer-norm extension") as excinfo:
        jit.build_extension(config, result)
    assert excinfo.value.__cause__ is cause


def test_loaded_module_is_cached(monkeypatch, make_config):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: True)
    load = _RecordingLoad()
    monkeypatch.setattr(ce, "load", load)
    config = make_config()

    first = jit.load_layer_norm_ops(config=config, runner=healthy_runner())
    second = jit.load_layer_norm_ops(config=config, runner=healthy_runner())

    assert first is second is load.module
    assert len(load.calls) == 1


def test_cached_module_does_not_wait_for_lock():
    sentinel = object()
    jit._CACHED_MOD = sentinel
    got = []

    jit._LOCK.acquire()
    try:
        worker = threading.Thread(target=lambda: got.append(jit.load_layer_norm_ops()))
        worker.start()
        worker.join(timeout=1)
        assert not worker.is_alive()
    finally:
        jit._LOCK.release()

    assert got == [sentinel]


def test_failure_is_cached(monkeypatch, make_config):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: True)
    calls = []

    def _broken_build(config, runner=None):
        calls.append(config)
        raise ToolchainError("`nvcc` was not found on PATH.")

    monkeypatch.setattr(jit, "run_build", _broken_build)
    config = make_config()

    with pytest.raises(ToolchainError) as first:
        jit.load_layer_norm_ops(config=config)
    with pytest.raises(ToolchainError) as second:
        jit.load_layer_norm_ops(config=config)

    assert first.value is second.value
    assert len(calls) == 1


def test_requires_cuda(monkeypatch, make_config):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
    with pytest.raises(ToolchainError, match="CUDA is not available"):
        jit.load_layer_norm_ops(config=make_config())
