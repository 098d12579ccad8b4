# coding=utf-8
"""
Library strandedness from RSeQC infer_experiment.py.

Example report parsed here:

  This is PairEnd Data
  Fraction of reads failed to determine: 0.0172
  Fraction of reads explained by "1++,1--,2+-,2-+": 0.4903
  Fraction of reads explained by "1+-,1-+,2++,2--": 0.4925

The raw report is kept next to the BAM so later runs (and featureCounts in
`strand: auto` mode) can reuse it without re-sampling the BAM.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from srrcount.functions.errors import ConfigurationError, StrandednessParseError
from srrcount.functions.task_runner import Stage, TaskResult
from srrcount.functions.utils import quote_cmd
from srrcount.rnaseq_pipeline.scripts.star_alignment import database, sorted_bam, star_dir

DEFAULT_EPSILON = 0.1

SENSE_KEYS = ("1++,1--,2+-,2-+", "++,--")
ANTISENSE_KEYS = ("1+-,1-+,2++,2--", "+-,-+")

_FRACTION_RE = re.compile(r'Fraction of reads explained by "([^"]+)":\s*([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)')
_FAILED_RE = re.compile(r"Fraction of reads failed to determine:\s*([0-9]*\.?[0-9]+)")
_LAYOUT_RE = re.compile(r"This is (\w+) Data")


class Strandedness(str, Enum):
    UNSTRANDED = "unstranded"
    STRANDED = "stranded"
    REVERSELY_STRANDED = "reversely_stranded"

    @property
    def featurecounts_code(self) -> int:
        """featureCounts -s value: 0 unstranded, 1 stranded, 2 reversely stranded."""
        return {"unstranded": 0, "stranded": 1, "reversely_stranded": 2}[self.value]

    @property
    def label(self) -> str:
        return {
            "unstranded": "unstranded",
            "stranded": "stranded (sense strand)",
            "reversely_stranded": "reversely stranded (antisense)",
        }[self.value]


@dataclass
class InferExperimentReport:
    layout: Optional[str]
    failed: Optional[float]
    sense: float
    antisense: float


def classify_strandedness(sense: float, antisense: float, epsilon: float = DEFAULT_EPSILON) -> Strandedness:
    # decimal comparison: a difference of exactly epsilon counts as stranded
    sense, antisense = Decimal(str(sense)), Decimal(str(antisense))
    if abs(sense - antisense) < Decimal(str(epsilon)):
        return Strandedness.UNSTRANDED
    if sense > antisense:
        return Strandedness.STRANDED
    return Strandedness.REVERSELY_STRANDED


def parse_infer_experiment(text: str) -> InferExperimentReport:
    """Extract the two strand fractions; raise StrandednessParseError if either is missing."""
    fractions = {key: float(value) for key, value in _FRACTION_RE.findall(text)}
    sense = next((fractions[k] for k in SENSE_KEYS if k in fractions), None)
    antisense = next((fractions[k] for k in ANTISENSE_KEYS if k in fractions), None)
    if sense is None or antisense is None:
        raise StrandednessParseError("infer_experiment.py output has no sense/antisense fractions")

    layout = _LAYOUT_RE.search(text)
    failed = _FAILED_RE.search(text)
    return InferExperimentReport(
        layout=layout.group(1) if layout else None,
        failed=float(failed.group(1)) if failed else None,
        sense=sense,
        antisense=antisense,
    )


def report_path(stage: Stage, sample: str) -> Path:
    return star_dir(stage, sample) / f"{sample}.infer_experiment.txt"


def read_strandedness(stage: Stage, sample: str, epsilon: float = DEFAULT_EPSILON) -> Strandedness:
    """Classify a sample from its saved infer_experiment report."""
    report = parse_infer_experiment(report_path(stage, sample).read_text())
    return classify_strandedness(report.sense, report.antisense, epsilon)


class StrandednessInference(Stage):
    name = "strandedness"
    tools_required = [("infer_experiment", "infer_experiment.py")]

    list_names = {
        Strandedness.UNSTRANDED: "srr_unstranded.txt",
        Strandedness.STRANDED: "srr_stranded.txt",
        Strandedness.REVERSELY_STRANDED: "srr_reverselystranded.txt",
    }

    def epsilon(self) -> float:
        return float((self.option("strandedness") or {}).get("unstranded_eps", DEFAULT_EPSILON))

    def required_inputs(self, sample: str) -> List[Path]:
        return [sorted_bam(self, sample)]

    def expected_outputs(self, sample: str) -> List[Path]:
        return [report_path(self, sample)]

    def validate(self) -> None:
        super().validate()
        bed = database(self, "bed")
        if not bed.is_file():
            raise ConfigurationError(f"BED annotation not found: {bed}")

    def run(self, sample: str) -> bool:
        tool = self.tool
        final = report_path(self, sample)
        partial = final.with_name(final.name + ".partial")
        sample_size = int((self.option("strandedness") or {}).get("sample_size", 500000))

        status = tool.exec_cmd(
            quote_cmd([
                self.binary("infer_experiment", "infer_experiment.py"),
                "-r", database(self, "bed"),
                "-i", sorted_bam(self, sample),
                "-s", sample_size,
            ]) + f" > {quote_cmd([partial])}",
            sample,
        )
        try:
            if status != 0:
                tool.write_log(f"[{sample}] infer_experiment.py exited with status {status}", "error")
                return False
            text = partial.read_text()
            try:
                report = parse_infer_experiment(text)
            except StrandednessParseError:
                tool.write_log(f"[{sample}] Could not parse infer_experiment.py output:\n{text.strip()}", "error")
                return False
            os.replace(partial, final)
        finally:
            if partial.exists():
                partial.unlink()

        verdict = classify_strandedness(report.sense, report.antisense, self.epsilon())
        tool.write_log(
            f"[{sample}] {report.layout or 'Unknown'} data; failed={report.failed}, "
            f"sense={report.sense}, antisense={report.antisense} -> {verdict.label}",
            "info",
        )
        return True

    def finalize(self, results: Dict[str, TaskResult]) -> None:
        """Write one SRR list per strandedness class and log the counts."""
        groups: Dict[Strandedness, List[str]] = {s: [] for s in Strandedness}
        for sample, result in results.items():
            if result not in (TaskResult.SUCCEEDED, TaskResult.SKIPPED_DONE):
                continue
            try:
                groups[read_strandedness(self, sample, self.epsilon())].append(sample)
            except (OSError, StrandednessParseError) as e:
                self.tool.write_log(f"[{sample}] Cannot classify saved report: {e}", "error")

        self.tool.mkdir(str(self.output_dir))
        for strand, samples in groups.items():
            if samples:
                with open(self.output_dir / self.list_names[strand], "w") as fh:
                    fh.write("\n".join(samples) + "\n")

        self.tool.write_log(
            f"SRR lists saved to directory: {self.output_dir} (unstranded threshold = {self.epsilon()})", "info"
        )
        self.tool.write_log(
            "Strandedness summary: "
            f"stranded (sense strand): {len(groups[Strandedness.STRANDED])}, "
            f"reversely stranded (antisense): {len(groups[Strandedness.REVERSELY_STRANDED])}, "
            f"unstranded: {len(groups[Strandedness.UNSTRANDED])}",
            "info",
        )
