"""GPU compute capability detection.

The architecture id is taken from `CUDA_COMPUTE_CAP` when set, otherwise from
the first GPU reported by `nvidia-smi --query-gpu=compute_cap --format=csv`,
whose output looks like:

    compute_cap
    8.6

Parsing is strict: anything but that shape is an error.
"""

from __future__ import annotations

from fused_layer_norm.build.tools import ToolRunner
from fused_layer_norm.config import BuildConfig, COMPUTE_CAP_ENV
from fused_layer_norm.console import console
from fused_layer_norm.errors import ConfigError, ParseError, ToolchainError

CSV_HEADER = "compute_cap"


def parse_compute_cap_override(raw: str) -> int:
    text = raw.strip()
    if not text.isdecimal():
        raise ConfigError(f"could not parse {COMPUTE_CAP_ENV}={raw!r} as an unsigned integer (e.g. 86)")
    return int(text)


def parse_nvidia_smi_output(stdout: str) -> int:
    """Parse the csv compute-capability query into an architecture id ("8.6" -> 86)."""
    lines = stdout.splitlines()
    if not lines:
        raise ParseError("missing header line in nvidia-smi output")
    header = lines[0].strip()
    if header != CSV_HEADER:
        raise ParseError(f"unexpected nvidia-smi header {header!r}, expected {CSV_HEADER!r}")
    if len(lines) < 2:
        raise ParseError("missing compute capability line in nvidia-smi output")

    # Additional lines are additional GPUs; the first one decides.
    data = lines[1].strip()
    major, sep, minor = data.partition(".")
    if not sep or not major.isdecimal() or not minor.isdecimal():
        raise ParseError(f"cannot parse compute capability {data!r} (expected <major>.<minor>)")
    return int(major + minor)


def detect_compute_cap(config: BuildConfig, runner: ToolRunner) -> int:
    """Resolve the architecture id for this build.

    The override short-circuits the driver query.
    """
    if config.compute_cap_override is not None:
        return parse_compute_cap_override(config.compute_cap_override)

    cmd = [config.nvidia_smi, "--query-gpu=compute_cap", "--format=csv"]
    if config.verbose:
        console.command(cmd)
    out = runner(cmd)
    if not out.ok:
        raise ToolchainError(
            f"`{config.nvidia_smi}` failed (exit status {out.returncode}). "
            "Ensure that you have CUDA installed and that `nvidia-smi` is in your PATH, "
            f"or set {COMPUTE_CAP_ENV} explicitly.\n{out.stderr}"
        )
    return parse_nvidia_smi_output(out.stdout)


__all__ = ["detect_compute_cap", "parse_compute_cap_override", "parse_nvidia_smi_output"]
