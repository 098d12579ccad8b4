# coding=utf-8
"""
featureCounts on the sorted BAM, run twice per sample:

  unique    -Q 10, uniquely mapped pairs only (gene-level counts for DE)
  fraction  -M --fraction -Q 0, multimappers fractionally assigned (TPM/QC)

Both runs read a scratch copy of the BAM. Results are moved into
<SRR>/featureCounts/ only when both runs succeed.

Strand mode (-s): 0 unstranded, 1 stranded, 2 reversely stranded, or
"auto" to take it from the sample's infer_experiment report.
"""

import shutil
from pathlib import Path
from typing import Any, Dict, List

from srrcount.functions.errors import ConfigurationError
from srrcount.functions.scratch import run_in_scratch
from srrcount.functions.task_runner import Stage
from srrcount.functions.utils import quote_cmd
from srrcount.rnaseq_pipeline.scripts.star_alignment import database, sorted_bam
from srrcount.rnaseq_pipeline.scripts.strandedness import DEFAULT_EPSILON, read_strandedness, report_path

FC_DEFAULTS: Dict[str, Any] = {
    "strand": 2,
    "feature_type": "exon",
    "attribute": "gene_id",
    "extra_attributes": "gene_name",
    "frac_overlap": 0.1,
    "min_mapq_unique": 10,
    "min_mapq_fraction": 0,
}

RUNS = ("unique", "fraction")


class FeatureCounting(Stage):
    name = "featurecounts"
    tools_required = [("featurecounts", "featureCounts")]

    def params(self) -> Dict[str, Any]:
        params = dict(FC_DEFAULTS)
        params.update(self.option("featurecounts") or {})
        return params

    def result_dir(self, sample: str) -> Path:
        return self.sample_dir(sample) / str(self.option("featurecounts_results_dir", "featureCounts"))

    def required_inputs(self, sample: str) -> List[Path]:
        inputs = [sorted_bam(self, sample)]
        if str(self.params()["strand"]) == "auto":
            inputs.append(report_path(self, sample))
        return inputs

    def expected_outputs(self, sample: str) -> List[Path]:
        d = self.result_dir(sample)
        return [
            d / "counts_unique.txt",
            d / f"{sample}_unique.summary",
            d / "counts_fraction.txt",
            d / f"{sample}_fraction.summary",
        ]

    def validate(self) -> None:
        super().validate()
        gtf = database(self, "gtf")
        if not gtf.is_file():
            raise ConfigurationError(f"GTF file not found at: {gtf}")
        strand = self.params()["strand"]
        if str(strand) not in ("0", "1", "2", "auto"):
            raise ConfigurationError(f"featurecounts.strand must be 0, 1, 2 or auto, got {strand!r}")

    def strand_code(self, sample: str) -> int:
        strand = self.params()["strand"]
        if str(strand) != "auto":
            return int(strand)
        eps = float((self.option("strandedness") or {}).get("unstranded_eps", DEFAULT_EPSILON))
        verdict = read_strandedness(self, sample, eps)
        self.tool.write_log(f"[{sample}] Library is {verdict.label}; using -s {verdict.featurecounts_code}", "info")
        return verdict.featurecounts_code

    def build_cmd(self, run: str, bam: Path, out_file: Path, strand: int) -> str:
        p = self.params()
        cmd: List[Any] = [
            self.binary("featurecounts", "featureCounts"),
            "-a", database(self, "gtf"),
            "-o", out_file,
            "-g", p["attribute"],
        ]
        if p.get("extra_attributes"):
            cmd += ["--extraAttributes", p["extra_attributes"]]
        cmd += ["--countReadPairs", "-t", p["feature_type"], "-p", "-B", "-C"]
        if run == "fraction":
            cmd += ["-M", "--fraction", "-Q", p["min_mapq_fraction"]]
        else:
            cmd += ["-Q", p["min_mapq_unique"]]
        cmd += [
            "--fracOverlap", p["frac_overlap"],
            "-T", int(self.arg("featurecounts_threads", 5)),
            "-s", strand,
            bam,
        ]
        return quote_cmd(cmd)

    def scratch_root(self) -> Path:
        scratch = self.configure.get("path", {}).get("scratch", {}) or {}
        return Path(scratch.get("featurecounts", self.work_dir / "tmp_featurecounts"))

    def run(self, sample: str) -> bool:
        tool = self.tool
        strand = self.strand_code(sample)
        result_dir = self.result_dir(sample)

        def count(staged: List[Path], tier: Path) -> int:
            bam = staged[0]
            tmp_dir = bam.parent
            tool.write_log(f"[{sample}] Running featureCounts (-s {strand})", "info")
            codes = {
                run: tool.exec_cmd(self.build_cmd(run, bam, tmp_dir / f"counts_{run}.txt", strand), sample, run)
                for run in RUNS
            }
            if any(codes.values()):
                tool.write_log(f"[{sample}] Error in one of the featureCounts runs: {codes}", "error")
                return 1

            tool.mkdir(str(result_dir))
            for run in RUNS:
                shutil.move(str(tmp_dir / f"counts_{run}.txt"), str(result_dir / f"counts_{run}.txt"))
                shutil.move(str(tmp_dir / f"counts_{run}.txt.summary"), str(result_dir / f"{sample}_{run}.summary"))
            return 0

        return run_in_scratch(sample, [sorted_bam(self, sample)], self.scratch_root(), count, tool)
