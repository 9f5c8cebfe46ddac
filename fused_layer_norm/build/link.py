"""Link metadata for the built archive.

`publish_link_directives` describes what a host must link against:
the scratch directory as search path, the static `layernorm` archive, and the
`cudart` + `stdc++` runtimes as shared libraries. It also lists what should
trigger a rebuild.

The Python side consumes the same directives through `linker_args()`, handed
to `torch.utils.cpp_extension.load` as `extra_ldflags` when the binding module
is built (see `fused_layer_norm.ops.jit`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from fused_layer_norm.build.compile import BuildArtifacts
from fused_layer_norm.config import BuildConfig, COMPUTE_CAP_ENV, LIBRARY_NAME

RUNTIME_LIBRARIES = ("cudart", "stdc++")


@dataclass(frozen=True)
class LinkDirectives:
    search_path: Path
    static_library: str
    dynamic_libraries: tuple[str, ...] = RUNTIME_LIBRARIES
    rerun_if_changed: tuple[Path, ...] = ()
    rerun_if_env_changed: tuple[str, ...] = (COMPUTE_CAP_ENV,)
    exported_env: dict[str, str] = field(default_factory=dict)

    def lines(self) -> list[str]:
        """Directives as `key=value` lines, one per signal."""
        out = [f"rerun-if-changed={p}" for p in self.rerun_if_changed]
        out += [f"rerun-if-env-changed={name}" for name in self.rerun_if_env_changed]
        out += [f"env={k}={v}" for k, v in self.exported_env.items()]
        out.append(f"link-search={self.search_path}")
        out.append(f"link-lib=static={self.static_library}")
        out += [f"link-lib=dylib={lib}" for lib in self.dynamic_libraries]
        return out

    def linker_args(self) -> list[str]:
        """Host linker flags: search path, the static archive, then its runtimes.

        Order matters for a static archive: it must follow the objects that
        reference `run_ln`, and precede the libraries it depends on.
        """
        args = [f"-L{self.search_path}", f"-l{self.static_library}"]
        args += [f"-l{lib}" for lib in self.dynamic_libraries]
        return args


def publish_link_directives(
    config: BuildConfig,
    artifacts: BuildArtifacts,
    compute_cap: int,
    *,
    include_dir: Optional[Path] = None,
) -> LinkDirectives:
    """Directives for a completed build. Only call after `build_kernel` returned."""
    exported = {COMPUTE_CAP_ENV: str(compute_cap)}
    if include_dir is not None:
        exported["CUDA_INCLUDE_DIR"] = str(include_dir)

    watched = [config.kernel_source.parent / pattern for pattern in ("*.cuh", "*.h")]
    return LinkDirectives(
        search_path=artifacts.archive.parent,
        static_library=LIBRARY_NAME,
        rerun_if_changed=(config.kernel_source, *watched),
        exported_env=exported,
    )


__all__ = [
    "LinkDirectives",
    "RUNTIME_LIBRARIES",
    "publish_link_directives",
]
