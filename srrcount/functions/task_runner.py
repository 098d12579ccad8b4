# coding=utf-8
"""
Lock-guarded per-sample execution shared by every stage.

A stage declares what a sample needs (`required_inputs`) and what a finished
sample looks like (`expected_outputs`); `process()` wraps its `run()` in the
sample lock and turns every outcome into a TaskResult.
"""

from __future__ import annotations

import multiprocessing
import multiprocessing.pool
import os
import traceback
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

from srrcount.functions.errors import PipelineError
from srrcount.functions.sample_lock import SampleLock, SampleLocked
from srrcount.functions.utils import all_exist, all_nonempty


class TaskResult(str, Enum):
    SKIPPED_LOCKED = "skipped-already-locked"
    SKIPPED_MISSING_INPUT = "skipped-missing-input"
    SKIPPED_DONE = "skipped-already-done"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Stage:
    """
    One per-sample step of the pipeline.

    Subclasses set `name`, implement `required_inputs`, `expected_outputs`
    and `run`, and may override `validate` (checked once before any sample)
    and `finalize` (called once with all results after the batch).
    """

    name = "stage"
    # (paths.yaml tools key, default binary name)
    tools_required: List[Tuple[str, str]] = []

    def __init__(self, configure: Dict[str, Any], paths: Dict[str, Any], tool):
        self.configure = configure
        self.paths = paths
        self.tool = tool

        path_cfg = configure.get("path", {})
        self.work_dir = Path(path_cfg.get("work_dir", "."))
        self.output_dir = Path(path_cfg.get("output_dir", self.work_dir))
        self.lock_dir = Path(path_cfg.get("lock_dir", self.work_dir / ".locks")) / self.name

    # ---- configuration helpers ----
    def arg(self, key: str, default: Any = None) -> Any:
        return (self.configure.get("args") or {}).get(key, default)

    def option(self, key: str, default: Any = None) -> Any:
        return (self.configure.get("others") or {}).get(key, default)

    def binary(self, key: str, default: str) -> str:
        return (self.paths.get("tools") or {}).get(key) or default

    def sample_dir(self, sample: str) -> Path:
        return self.work_dir / sample

    # ---- predicates ----
    def required_inputs(self, sample: str) -> List[Path]:
        raise NotImplementedError

    def expected_outputs(self, sample: str) -> List[Path]:
        raise NotImplementedError

    def has_inputs(self, sample: str) -> bool:
        return all_exist(self.required_inputs(sample))

    def is_complete(self, sample: str) -> bool:
        return all_nonempty(self.expected_outputs(sample))

    # ---- hooks ----
    def validate(self) -> None:
        """Raise ConfigurationError if the stage cannot run at all."""
        self.tool.check_tools(self.binary(k, d) for k, d in self.tools_required)

    def run(self, sample: str) -> bool:
        raise NotImplementedError

    def finalize(self, results: Dict[str, TaskResult]) -> None:
        pass


def process(stage: Stage, sample: str) -> TaskResult:
    """Run one stage for one sample under its lock; never raises for per-sample problems."""
    tool = stage.tool
    lock = SampleLock(stage.lock_dir, sample)
    try:
        lock.acquire()
    except SampleLocked:
        tool.write_log(f"[{sample}] Already being processed by another process - skipping", "warning")
        return TaskResult.SKIPPED_LOCKED
    except OSError as e:
        tool.write_log(f"[{sample}] Failed to create lock {lock.path}: {e}", "error")
        return TaskResult.FAILED

    try:
        if not stage.has_inputs(sample):
            missing = [str(p) for p in stage.required_inputs(sample) if not os.path.isfile(p)]
            tool.write_log(f"[{sample}] Input files not found - skipping: {', '.join(missing)}", "warning")
            return TaskResult.SKIPPED_MISSING_INPUT

        if stage.is_complete(sample):
            tool.write_log(f"[{sample}] Already processed - skipping", "info")
            return TaskResult.SKIPPED_DONE

        tool.write_log(f"[{sample}] {stage.name} started", "info")
        try:
            ok = stage.run(sample)
        except PipelineError as e:
            tool.write_log(f"[{sample}] {stage.name} error: {e}", "error")
            ok = False
        except Exception:
            tool.write_log(f"[{sample}] {stage.name} error:\n{traceback.format_exc()}", "error")
            ok = False

        if ok:
            tool.write_log(f"[{sample}] {stage.name} completed successfully", "info")
            return TaskResult.SUCCEEDED
        tool.write_log(f"[{sample}] {stage.name} failed", "error")
        return TaskResult.FAILED
    finally:
        lock.release()


# -------- Non-daemon Pool: workers start tool processes of their own --------
class _NoDaemonProcess(multiprocessing.Process):
    """Process whose daemon attribute is always False."""

    @property
    def daemon(self) -> bool:
        return False

    @daemon.setter
    def daemon(self, value: bool) -> None:
        pass


class NoDaemonPool(multiprocessing.pool.Pool):
    @staticmethod
    def Process(_, *args, **kwargs):
        return _NoDaemonProcess(*args, **kwargs)


def run_samples(stage: Stage, samples: Iterable[str], pool_size: int = 1) -> Dict[str, TaskResult]:
    """
    Process every sample with a bounded pool and return {sample: TaskResult}.

    pool_size <= 1 runs the samples one after another in this process.
    """
    samples = list(samples)
    results: Dict[str, TaskResult] = {}

    if pool_size <= 1:
        for sample in samples:
            results[sample] = process(stage, sample)
        return results

    with NoDaemonPool(processes=pool_size) as pool:
        pending = {
            sample: pool.apply_async(process, (stage, sample), error_callback=stage.tool.print_pool_error)
            for sample in samples
        }
        pool.close()
        pool.join()

    for sample, async_result in pending.items():
        try:
            results[sample] = async_result.get()
        except Exception:
            results[sample] = TaskResult.FAILED
    return results
