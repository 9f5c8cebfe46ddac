"""Ahead-of-time build of the fused layer-norm kernel.

Usage:
    fused-ln-build                       # detect the GPU and build
    fused-ln-build --compute-cap 86      # build for sm_86 without querying nvidia-smi
    fused-ln-build --print-directives    # emit link directives on stdout
    python -m fused_layer_norm -v        # same, echoing every nvcc command
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Optional, Sequence

from fused_layer_norm.build.pipeline import run_build
from fused_layer_norm.config import BuildConfig, COMPUTE_CAP_ENV, KERNEL_SOURCE_ENV
from fused_layer_norm.console import console
from fused_layer_norm.errors import BuildError, FusedLayerNormError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fused-ln-build",
        description="Build the fused layer-norm CUDA kernel for this machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--compute-cap", type=str, default=None, help=f"Target architecture, overrides {COMPUTE_CAP_ENV} (e.g. 86)")
    parser.add_argument("--build-dir", type=Path, default=None, help="Scratch directory for ln_api.o / liblayernorm.a and the extension")
    parser.add_argument("--kernel-source", type=Path, default=None, help=f"Path to ln_api.cu, overrides {KERNEL_SOURCE_ENV}")
    parser.add_argument("--print-directives", action="store_true", help="Print link directives to stdout after a successful build")
    parser.add_argument("-v", "--verbose", action="store_true", help="Echo external commands")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    env = dict(os.environ)
    if args.compute_cap is not None:
        env[COMPUTE_CAP_ENV] = args.compute_cap
    if args.kernel_source is not None:
        env[KERNEL_SOURCE_ENV] = str(args.kernel_source)

    try:
        config = BuildConfig.from_env(env, build_dir=args.build_dir, verbose=args.verbose)
        result = run_build(config)
    except BuildError as e:
        console.error(f"build failed while {e.stage}", detail=" ".join(e.command))
        console.tool_output("stdout", e.stdout)
        console.tool_output("stderr", e.stderr)
        return 1
    except FusedLayerNormError as e:
        console.error(type(e).__name__, detail=str(e))
        return 1

    if not result.rebuilt:
        console.info(f"kernel for sm_{result.compute_cap} is up to date", detail=str(result.artifacts.archive))
    if args.verbose:
        console.header(
            "fused layer-norm build",
            arch=f"sm_{result.compute_cap}",
            archive=result.artifacts.archive,
            rebuilt=result.rebuilt,
        )
    if args.print_directives:
        for line in result.directives.lines():
            print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
