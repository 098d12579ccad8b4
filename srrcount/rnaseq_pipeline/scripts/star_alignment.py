# coding=utf-8
"""
STAR alignment of the trimmed reads followed by samtools coordinate sort.

Both heavy steps wait on the memory gate. STAR reads its inputs from a scratch
copy: the SSD tier first, the HDD tier if that attempt fails.
"""

import os
from pathlib import Path
from typing import List

from srrcount.functions.errors import ConfigurationError
from srrcount.functions.resource_gate import DEFAULT_POLL_INTERVAL, ResourceGate
from srrcount.functions.scratch import run_with_fallback
from srrcount.functions.task_runner import Stage
from srrcount.functions.utils import quote_cmd


def star_dir(stage: Stage, sample: str) -> Path:
    return stage.sample_dir(sample) / str(stage.option("star_results_dir", "STAR_results"))


def sorted_bam(stage: Stage, sample: str) -> Path:
    return star_dir(stage, sample) / f"{sample}_Aligned.sortedByCoord.out.bam"


def database(stage: Stage, key: str) -> Path:
    value = (stage.paths.get("database") or {}).get(key)
    if not value:
        raise ConfigurationError(f"paths.yaml is missing database.{key}")
    return Path(value)


class StarAlignment(Stage):
    name = "star"
    tools_required = [("star", "STAR"), ("samtools", "samtools")]

    def required_inputs(self, sample: str) -> List[Path]:
        d = self.sample_dir(sample) / "trimmed_fastq"
        return [d / f"{sample}_1.trim.fastq.gz", d / f"{sample}_2.trim.fastq.gz"]

    def expected_outputs(self, sample: str) -> List[Path]:
        return [sorted_bam(self, sample)]

    def validate(self) -> None:
        super().validate()
        genome_dir = database(self, "star_index")
        gtf = database(self, "gtf")
        if not genome_dir.is_dir():
            raise ConfigurationError(f"STAR genome index not found: {genome_dir}")
        if not gtf.is_file():
            raise ConfigurationError(f"GTF file not found at: {gtf}")

    def memory_gate(self) -> ResourceGate:
        return ResourceGate(
            self.tool,
            required_gb=int(self.arg("required_ram_gb", 50)),
            interval=float(self.arg("memory_poll_interval", DEFAULT_POLL_INTERVAL)),
            max_wait=self.arg("max_memory_wait"),
        )

    def scratch_tiers(self):
        scratch = self.configure.get("path", {}).get("scratch", {}) or {}
        primary = scratch.get("star_primary", self.work_dir / "tmp_star_ssd")
        secondary = scratch.get("star_secondary", self.work_dir / "tmp_star_hdd")
        return primary, secondary

    def star_cmd(self, sample: str, r1: Path, r2: Path) -> str:
        out_prefix = f"{star_dir(self, sample)}/{sample}_"
        return quote_cmd([
            self.binary("star", "STAR"),
            "--runThreadN", int(self.arg("star_threads", 15)),
            "--genomeDir", database(self, "star_index"),
            "--readFilesIn", r1, r2,
            "--readFilesCommand", "zcat",
            "--outSAMtype", "BAM", "Unsorted",
            "--sjdbGTFfile", database(self, "gtf"),
            "--outFileNamePrefix", out_prefix,
        ])

    def run(self, sample: str) -> bool:
        tool = self.tool
        gate = self.memory_gate()
        out_dir = star_dir(self, sample)
        tool.mkdir(str(out_dir))

        def align(staged: List[Path], tier: Path) -> int:
            r1, r2 = staged
            tool.write_log(f"[{sample}] Running STAR with temporary base directory: {tier}", "info")
            return gate.invoke(self.star_cmd(sample, r1, r2), sample)

        primary, secondary = self.scratch_tiers()
        if not run_with_fallback(sample, self.required_inputs(sample), primary, secondary, align, tool):
            tool.write_log(f"[{sample}] STAR failed in both SSD and HDD temp locations - skipping this sample", "error")
            return False

        return self.sort_bam(sample, gate)

    def sort_bam(self, sample: str, gate: ResourceGate) -> bool:
        tool = self.tool
        out_dir = star_dir(self, sample)
        unsorted = out_dir / f"{sample}_Aligned.out.bam"
        final = sorted_bam(self, sample)
        partial = out_dir / f"{sample}_Aligned.sortedByCoord.partial.bam"

        if not unsorted.is_file():
            tool.write_log(f"[{sample}] Unsorted BAM file not found after STAR", "error")
            return False

        tool.write_log(f"[{sample}] Sorting BAM with samtools...", "info")
        status = gate.invoke(quote_cmd([
            self.binary("samtools", "samtools"), "sort",
            "-@", int(self.arg("sort_threads", 8)),
            "-o", partial,
            unsorted,
        ]), sample)
        if status != 0:
            tool.write_log(f"[{sample}] BAM sorting failed (exit {status}) - skipping this sample", "error")
            if partial.exists():
                partial.unlink()
            return False

        os.replace(partial, final)
        unsorted.unlink()
        tool.write_log(f"[{sample}] BAM successfully sorted", "info")
        return True
