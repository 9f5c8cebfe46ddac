"""End-to-end kernel build: detect -> validate -> compile -> archive -> publish.

Every step is a hard precondition for the next and they run strictly in
order, blocking on each external tool. A `build_stamp.json` next to the
artifacts records the configuration that produced them; when it still matches
(same architecture, same override, same source mtimes) the compiler is not
invoked again.

There is no partial-build recovery. If any step fails after artifacts started
being written, the stamp and every artifact are removed so the next run starts
over from detection.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from fused_layer_norm.build.catalog import query_catalog
from fused_layer_norm.build.compile import BuildArtifacts, build_kernel
from fused_layer_norm.build.detect import detect_compute_cap
from fused_layer_norm.build.link import LinkDirectives, publish_link_directives
from fused_layer_norm.build.sdk import find_cuda_include_dir
from fused_layer_norm.build.tools import SubprocessRunner, ToolRunner
from fused_layer_norm.config import BuildConfig
from fused_layer_norm.console import console


@dataclass(frozen=True)
class BuildStamp:
    compute_cap: int
    override: Optional[str]
    sources: dict[str, int] = field(default_factory=dict)

    @classmethod
    def for_config(cls, config: BuildConfig, compute_cap: int) -> "BuildStamp":
        sources = {str(p): p.stat().st_mtime_ns for p in config.watched_sources() if p.exists()}
        return cls(compute_cap=compute_cap, override=config.compute_cap_override, sources=sources)

    @classmethod
    def load(cls, path: Path) -> Optional["BuildStamp"]:
        """Read a stamp; an unreadable or foreign file counts as no stamp."""
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return cls(
                compute_cap=int(data["compute_cap"]),
                override=data.get("override"),
                sources={str(k): int(v) for k, v in dict(data.get("sources", {})).items()},
            )
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def write(self, path: Path) -> None:
        path.write_text(json.dumps(asdict(self), indent=2, sort_keys=True), encoding="utf-8")


@dataclass(frozen=True)
class BuildResult:
    compute_cap: int
    artifacts: BuildArtifacts
    directives: LinkDirectives
    rebuilt: bool


def _artifact_paths(config: BuildConfig) -> tuple[Path, ...]:
    return (config.object_path, config.archive_path)


def discard_artifacts(config: BuildConfig) -> None:
    config.stamp_path.unlink(missing_ok=True)
    for p in _artifact_paths(config):
        p.unlink(missing_ok=True)


def is_up_to_date(config: BuildConfig, stamp: BuildStamp) -> bool:
    if BuildStamp.load(config.stamp_path) != stamp:
        return False
    return all(p.is_file() for p in _artifact_paths(config))


def run_build(config: BuildConfig, runner: Optional[ToolRunner] = None) -> BuildResult:
    """Build (or reuse) the layer-norm kernel for this machine."""
    runner = SubprocessRunner() if runner is None else runner

    compute_cap = detect_compute_cap(config, runner)
    catalog = query_catalog(config, runner)
    catalog.validate(compute_cap)
    include_dir = find_cuda_include_dir(config.env)
    if config.verbose:
        console.info(f"target sm_{compute_cap}", detail=f"nvcc max sm_{catalog.max_code}, include {include_dir}")

    stamp = BuildStamp.for_config(config, compute_cap)
    if is_up_to_date(config, stamp):
        artifacts = BuildArtifacts(object_file=config.object_path, archive=config.archive_path)
        return BuildResult(
            compute_cap=compute_cap,
            artifacts=artifacts,
            directives=publish_link_directives(config, artifacts, compute_cap, include_dir=include_dir),
            rebuilt=False,
        )

    t0 = time.perf_counter()
    try:
        # stale stamp goes first: a crash mid-build must not look up to date
        config.stamp_path.unlink(missing_ok=True)
        with console.spinner(f"compiling {config.kernel_source.name} for sm_{compute_cap}…"):
            artifacts = build_kernel(config, compute_cap, runner, include_dir=include_dir)
        directives = publish_link_directives(config, artifacts, compute_cap, include_dir=include_dir)
        stamp.write(config.stamp_path)
    except BaseException:
        discard_artifacts(config)
        raise

    console.success(f"kernel built for sm_{compute_cap}", detail=f"{artifacts.archive} ({time.perf_counter() - t0:.1f}s)")
    return BuildResult(
        compute_cap=compute_cap,
        artifacts=artifacts,
        directives=directives,
        rebuilt=True,
    )


__all__ = [
    "BuildResult",
    "BuildStamp",
    "discard_artifacts",
    "is_up_to_date",
    "run_build",
]
