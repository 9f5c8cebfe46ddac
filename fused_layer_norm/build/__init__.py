"""Build-time side of the fused layer-norm kernel.

Nothing here runs on the hot path. It runs once per configuration change
(new GPU, new override, edited kernel sources) and blocks while `nvcc` works.
"""

from __future__ import annotations

from .catalog import ToolchainCatalog, parse_gpu_codes, query_catalog
from .compile import BuildArtifacts, build_kernel
from .detect import detect_compute_cap
from .link import LinkDirectives, publish_link_directives
from .pipeline import BuildResult, BuildStamp, run_build
from .sdk import find_cuda_include_dir
from .tools import SubprocessRunner, ToolOutput, ToolRunner

__all__ = [
    "BuildArtifacts",
    "BuildResult",
    "BuildStamp",
    "LinkDirectives",
    "SubprocessRunner",
    "ToolOutput",
    "ToolRunner",
    "ToolchainCatalog",
    "build_kernel",
    "detect_compute_cap",
    "find_cuda_include_dir",
    "parse_gpu_codes",
    "publish_link_directives",
    "query_catalog",
    "run_build",
]
