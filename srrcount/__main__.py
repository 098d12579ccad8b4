# coding=utf-8
from __future__ import annotations
import argparse
import sys
from typing import List

from srrcount.rnaseq_pipeline.rnaseq import STAGES


def _run_stage(stage: str, rest: List[str]) -> int:
    from srrcount.rnaseq_pipeline.rnaseq import main as rnaseq_main

    # strip a leading '--' if present
    rest = list(rest or [])
    if rest and rest[0] == "--":
        rest = rest[1:]
    return int(rnaseq_main(["--stage", stage, *rest]) or 0)


def main(argv: List[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]

    parser = argparse.ArgumentParser(prog="srrcount", description="SRA to gene counts, one stage at a time")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("all", help="Run every stage in order")
    subparsers.add_parser("fasterq", help="Extract paired FASTQ from .sra archives")
    subparsers.add_parser("fastp", help="Trim reads with fastp")
    subparsers.add_parser("star", help="Align with STAR and sort with samtools")
    subparsers.add_parser("strandedness", help="Infer library strandedness with RSeQC")
    subparsers.add_parser("featurecounts", help="Count reads per gene with featureCounts")
    subparsers.add_parser("gene_counts", help="Extract per-sample gene count tables")

    # unknown arguments (-c, -p, --workdir, ...) belong to the stage runner
    args, rest = parser.parse_known_args(argv)

    if args.command == "all" or args.command in STAGES:
        return _run_stage(args.command, rest)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
