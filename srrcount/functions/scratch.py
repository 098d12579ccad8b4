# coding=utf-8
"""
Scratch-tier selection for steps that want their inputs on fast local storage.

Inputs are copied into <tier>/<sample>/ and the attempt runs against the
copies. The per-sample subdirectory is removed after every attempt, whatever
the outcome. The primary tier is tried first and the secondary once more.
"""

from __future__ import annotations

import shutil
import traceback
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

PathLike = Union[str, Path]


def stage_inputs(inputs: Sequence[PathLike], tmp_dir: Path) -> List[Path]:
    """Copy inputs into tmp_dir and return the copied paths."""
    tmp_dir.mkdir(parents=True, exist_ok=True)
    staged = []
    for src in inputs:
        dst = tmp_dir / Path(src).name
        shutil.copy2(src, dst)
        staged.append(dst)
    return staged


def run_in_scratch(
    sample: str,
    inputs: Sequence[PathLike],
    scratch_dir: PathLike,
    attempt: Callable[[List[Path], Path], int],
    tool,
) -> bool:
    """
    One attempt in one tier: copy, run, clean up. Returns True on exit status 0.

    A failed copy or an exception raised by `attempt` fails this attempt only.
    """
    tmp_dir = Path(scratch_dir) / sample
    try:
        try:
            staged = stage_inputs(inputs, tmp_dir)
        except OSError as e:
            tool.write_log(f"[{sample}] Failed to copy inputs to {tmp_dir}: {e}", "error")
            return False
        try:
            status = attempt(staged, Path(scratch_dir))
        except Exception:
            tool.write_log(f"[{sample}] Attempt in {scratch_dir} raised:\n{traceback.format_exc()}", "error")
            return False
        return status == 0
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


def run_with_fallback(
    sample: str,
    inputs: Sequence[PathLike],
    primary_dir: PathLike,
    secondary_dir: Optional[PathLike],
    attempt: Callable[[List[Path], Path], int],
    tool,
) -> bool:
    """
    Try `attempt` with inputs staged on primary_dir, then on secondary_dir.

    Returns False only when every tier failed; there is no third tier.
    """
    tiers = [primary_dir] + ([secondary_dir] if secondary_dir else [])
    for n, tier in enumerate(tiers):
        if run_in_scratch(sample, inputs, tier, attempt, tool):
            tool.write_log(f"[{sample}] Completed successfully with temporary base directory {tier}", "info")
            return True
        if n + 1 < len(tiers):
            tool.write_log(f"[{sample}] Attempt in {tier} failed, retrying in {tiers[n + 1]}", "warning")

    tool.write_log(f"[{sample}] Failed in all temporary locations ({', '.join(map(str, tiers))})", "error")
    return False
