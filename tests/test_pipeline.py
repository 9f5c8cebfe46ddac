"""End-to-end build pipeline against fake tools."""

from __future__ import annotations

import os

import pytest

from fused_layer_norm.build.pipeline import BuildStamp, run_build
from fused_layer_norm.build.tools import ToolOutput
from fused_layer_norm.errors import (
    ArchitectureTooNewError,
    BuildError,
    ConfigError,
    UnsupportedArchitectureError,
)
from tests.fakes import (
    FakeRunner,
    NVCC_CODES,
    healthy_runner,
    is_archive,
    is_compile,
    is_list_codes,
    is_smi,
    touching_nvcc,
)


def _compiles(runner: FakeRunner) -> list[list[str]]:
    return [c for c in runner.calls if is_compile(c)]


def test_full_build(make_config):
    config = make_config()
    runner = healthy_runner()

    result = run_build(config, runner)

    assert result.rebuilt
    assert result.compute_cap == 86
    assert result.artifacts.archive.is_file()
    assert config.stamp_path.is_file()

    steps = [
        is_smi(runner.calls[0]),
        is_list_codes(runner.calls[1]),
        is_compile(runner.calls[2]),
        is_archive(runner.calls[3]),
    ]
    assert steps == [True] * 4
    assert len(runner.calls) == 4
    assert "link-lib=static=layernorm" in result.directives.lines()


def test_unchanged_configuration_is_not_rebuilt(make_config):
    config = make_config()
    run_build(config, healthy_runner())

    runner = healthy_runner()
    result = run_build(config, runner)

    assert not result.rebuilt
    assert result.compute_cap == 86
    assert _compiles(runner) == []
    # detection and validation still run
    assert is_smi(runner.calls[0]) and is_list_codes(runner.calls[1])


def test_changed_architecture_rebuilds(make_config):
    run_build(make_config(), healthy_runner())

    runner = healthy_runner()
    result = run_build(make_config(compute_cap_override="80"), runner)

    assert result.rebuilt
    assert result.compute_cap == 80
    assert "--gpu-architecture=sm_80" in _compiles(runner)[0]
    assert BuildStamp.load(make_config().stamp_path).compute_cap == 80


def test_edited_source_rebuilds(make_config, kernel_source):
    config = make_config()
    run_build(config, healthy_runner())

    st = kernel_source.stat()
    os.utime(kernel_source, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))

    runner = healthy_runner()
    assert run_build(config, runner).rebuilt
    assert len(_compiles(runner)) == 1


def test_missing_artifact_rebuilds(make_config):
    config = make_config()
    run_build(config, healthy_runner())
    config.archive_path.unlink()

    assert run_build(config, healthy_runner()).rebuilt


def test_unsupported_architecture_never_compiles(make_config):
    runner = healthy_runner(smi="compute_cap\n8.7\n")
    with pytest.raises(UnsupportedArchitectureError):
        run_build(make_config(), runner)
    assert _compiles(runner) == []


def test_too_new_architecture_never_compiles(make_config):
    runner = healthy_runner(smi="compute_cap\n9.0\n", codes="sm_80\nsm_86\n")
    with pytest.raises(ArchitectureTooNewError):
        run_build(make_config(), runner)
    assert _compiles(runner) == []


def test_bad_override_is_config_error(make_config):
    runner = healthy_runner()
    with pytest.raises(ConfigError):
        run_build(make_config(compute_cap_override="ampere"), runner)
    assert runner.calls == []


def test_failed_rebuild_discards_previous_artifacts(make_config):
    config = make_config()
    run_build(config, healthy_runner())

    failing = (
        FakeRunner()
        .on(is_list_codes, ToolOutput(0, NVCC_CODES))
        .on(is_compile, ToolOutput(1, "", "error: sm_80 kernel failed"))
        .on(lambda argv: argv[0] == "nvcc", touching_nvcc)
    )
    with pytest.raises(BuildError) as excinfo:
        run_build(make_config(compute_cap_override="80"), failing)

    assert "error: sm_80 kernel failed" in excinfo.value.stderr
    assert failing.commands_with("--lib") == []
    assert not config.stamp_path.exists()
    assert not config.object_path.exists()
    assert not config.archive_path.exists()


def test_archive_failure_discards_partial_artifacts(make_config):
    config = make_config()
    runner = (
        FakeRunner()
        .on(is_smi, ToolOutput(0, "compute_cap\n8.6\n"))
        .on(is_list_codes, ToolOutput(0, NVCC_CODES))
        .on(is_archive, ToolOutput(1, "", "nvcc fatal: cannot write liblayernorm.a"))
        .on(lambda argv: argv[0] == "nvcc", touching_nvcc)
    )
    with pytest.raises(BuildError, match="archiving"):
        run_build(config, runner)

    assert not config.object_path.exists()
    assert not config.stamp_path.exists()


def test_corrupt_stamp_counts_as_stale(make_config):
    config = make_config()
    run_build(config, healthy_runner())
    config.stamp_path.write_text("{not json", encoding="utf-8")

    assert BuildStamp.load(config.stamp_path) is None
    assert run_build(config, healthy_runner()).rebuilt
