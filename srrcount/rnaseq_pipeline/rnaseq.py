# coding=utf-8
"""
Launcher for the RNA-seq counting pipeline.

01  fasterq        SRA -> paired FASTQ (fasterq-dump + pigz)
02  fastp          adapter/quality trimming (+ MultiQC summary)
03  star           STAR alignment (SSD/HDD scratch fallback) + samtools sort
04  strandedness   RSeQC infer_experiment.py, per-class SRR lists
05  featurecounts  unique and fractional-multimapper counts
06  gene_counts    per-sample gene tables (+ merged matrix)

Each stage is run over every sample with a bounded process pool. A sample is
skipped when its lock is held, its inputs are missing or its outputs exist.
Configuration errors abort before any sample is processed.
"""

from __future__ import annotations

import argparse
import os
import traceback
from multiprocessing import Manager
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from srrcount.functions.errors import ConfigurationError
from srrcount.functions.pipeline_tools import tools
from srrcount.functions.task_runner import Stage, TaskResult, run_samples
from srrcount.functions.utils import discover_samples, read_sample_list
from srrcount.rnaseq_pipeline.scripts.feature_counts import FeatureCounting
from srrcount.rnaseq_pipeline.scripts.gene_counts import GeneCounts
from srrcount.rnaseq_pipeline.scripts.read_trimming import ReadTrimming
from srrcount.rnaseq_pipeline.scripts.sra_extract import SraExtraction
from srrcount.rnaseq_pipeline.scripts.star_alignment import StarAlignment
from srrcount.rnaseq_pipeline.scripts.strandedness import StrandednessInference

FLAG = "RNAseqCounts"
STAGES = {
    "fasterq": SraExtraction,
    "fastp": ReadTrimming,
    "star": StarAlignment,
    "strandedness": StrandednessInference,
    "featurecounts": FeatureCounting,
    "gene_counts": GeneCounts,
}


def resolve_samples(configure: Dict[str, Any]) -> List[str]:
    """
    Sample identifiers, from (in order of precedence):
      configure['samples'] list, the path.srr_list file, SRR* dirs under path.work_dir.
    """
    if configure.get("samples"):
        return [str(s) for s in configure["samples"]]

    path_cfg = configure.get("path") or {}
    if path_cfg.get("srr_list"):
        return list(read_sample_list(path_cfg["srr_list"]))
    if path_cfg.get("work_dir"):
        return discover_samples(path_cfg["work_dir"], str(path_cfg.get("sample_pattern", "SRR*")))
    raise ConfigurationError("No samples: set 'samples', 'path.srr_list' or 'path.work_dir' in the configure YAML")


def build_stages(names: List[str], configure, paths, workdir: str, mgr, bin_dirs: List[str]) -> List[Stage]:
    """One Stage per name, each with its own tools (and therefore its own stage log)."""
    stages = []
    for name in names:
        tool = tools(workdir, name, mgr.Lock(), mgr.Queue())
        if bin_dirs:
            tool.set_path_prefix(*bin_dirs)
        stages.append(STAGES[name](configure, paths, tool))
    return stages


def run_stage(stage: Stage, samples: List[str], pool_size: int, mgr=None) -> Dict[str, TaskResult]:
    """Process all samples for one stage, then finalize and summarise it."""
    tool = stage.tool
    if mgr is not None:
        tool.sharing_variable(mgr, samples)
    tool.write_log(f"=== {stage.name} run started ({len(samples)} samples, {pool_size} in parallel) ===", "info")

    results = run_samples(stage, samples, pool_size)
    try:
        stage.finalize(results)
    except Exception:
        tool.write_log(f"{stage.name} finalize error:\n{traceback.format_exc()}", "error")

    tool.summary(results)
    tool.write_log(f"=== {stage.name} run finished ===", "info")
    return results


def _peek_output_dir(cfg_path: str) -> Optional[str]:
    """Quickly read YAML to fetch path.output_dir; return None if missing or on error."""
    try:
        with open(cfg_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        out_dir = (data.get("path") or {}).get("output_dir")
        return str(Path(out_dir).expanduser()) if out_dir else None
    except (OSError, yaml.YAMLError, AttributeError):
        return None


# ---------------------- CLI entry ----------------------
def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="RNA-seq counting pipeline")
    parser.add_argument("-s", "--stage", choices=list(STAGES) + ["all"], default="all",
                        help="Stage to run (default: all, in order)")
    parser.add_argument("-c", "--configure", required=True, help="Path to configuration YAML")
    parser.add_argument("-p", "--paths", dest="paths", required=False, help="Path to paths YAML")
    parser.add_argument("--workdir", default=None, help="Log root (default: config.path.output_dir or CWD)")
    parser.add_argument("--pool-size", type=int, default=None, help="Override args.pool_size")
    parser.add_argument("--strict", action="store_true", help="Exit with status 2 if any sample failed")
    args = parser.parse_args(argv)

    # 1) Decide working/log root: --workdir > configure.path.output_dir > CWD
    cfg_output_dir = _peek_output_dir(args.configure)
    workdir = str(Path(args.workdir or cfg_output_dir or os.getcwd()).resolve())

    mgr = Manager()
    tool = tools(workdir, FLAG, mgr.Lock(), mgr.Queue())
    tool.write_log(f"work_path: {tool.sys_path}", "info")
    tool.write_log(f"start_log: {tool.start_log}", "info")

    stages: List[Stage] = []
    try:
        # 2) Load YAMLs and validate everything before any sample starts
        configure = tool.get_configure(args.configure)
        paths = tool.get_paths(args.paths)
        tool.write_log(f"configures: {configure}", "info")
        tool.write_log(f"paths: {paths}", "info")

        samples = resolve_samples(configure)
        if not samples:
            raise ConfigurationError("Sample list is empty")
        pool_size = args.pool_size or int((configure.get("args") or {}).get("pool_size", 1))
        names = list(STAGES) if args.stage == "all" else [args.stage]
        bin_dirs = (paths.get("env") or {}).get("bin_dirs") or []

        stages = build_stages(names, configure, paths, workdir, mgr, bin_dirs)
        for stage in stages:
            stage.validate()
    except ConfigurationError as e:
        tool.write_log(f"Configuration error: {e}", "error")
        for stage in stages:
            stage.tool.close()
        tool.close()
        mgr.shutdown()
        return 1

    tool.write_log(f"Pipeline started: {len(samples)} samples, stages {names}, pool_size={pool_size}", "info")

    failed = 0
    for stage in stages:
        results = run_stage(stage, samples, pool_size, mgr)
        failed += sum(1 for r in results.values() if r is TaskResult.FAILED)
        stage.tool.close()

    tool.write_log(f"All tasks completed ({failed} failed sample-stages)", "info")
    tool.close()
    mgr.shutdown()

    if args.strict and failed:
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
