# coding=utf-8
from pathlib import Path
from typing import Any, Dict, List

from srrcount.functions.task_runner import Stage, TaskResult
from srrcount.functions.utils import quote_cmd

FASTP_DEFAULTS: Dict[str, Any] = {
    "detect_adapter_for_pe": True,
    "cut_front": True,
    "cut_tail": True,
    "cut_window_size": 4,
    "cut_mean_quality": 22,
    "length_required": 30,
}


class ReadTrimming(Stage):
    """fastp adapter/quality trimming of the raw paired FASTQs."""

    name = "fastp"
    tools_required = [("fastp", "fastp")]

    def reports_dir(self) -> Path:
        return Path(self.configure.get("path", {}).get("reports_dir", self.output_dir / "reports" / "fastp"))

    def required_inputs(self, sample: str) -> List[Path]:
        d = self.sample_dir(sample)
        return [d / f"{sample}_1.fastq.gz", d / f"{sample}_2.fastq.gz"]

    def trimmed_reads(self, sample: str) -> List[Path]:
        d = self.sample_dir(sample) / "trimmed_fastq"
        return [d / f"{sample}_1.trim.fastq.gz", d / f"{sample}_2.trim.fastq.gz"]

    def reports(self, sample: str) -> List[Path]:
        return [self.reports_dir() / f"{sample}.fastp.html", self.reports_dir() / f"{sample}.fastp.json"]

    def expected_outputs(self, sample: str) -> List[Path]:
        return self.trimmed_reads(sample) + self.reports(sample)

    def fastp_options(self) -> List[str]:
        params = dict(FASTP_DEFAULTS)
        params.update(self.option("fastp") or {})
        opts: List[str] = []
        for key, value in params.items():
            if value is True:
                opts.append(f"--{key}")
            elif value is False or value is None:
                continue
            else:
                opts.extend([f"--{key}", str(value)])
        return opts

    def build_cmd(self, sample: str) -> str:
        r1, r2 = self.required_inputs(sample)
        o1, o2 = self.trimmed_reads(sample)
        html, json = self.reports(sample)
        return quote_cmd([
            self.binary("fastp", "fastp"),
            "-w", int(self.arg("fastp_threads", 8)),
            "-i", r1, "-I", r2,
            "-o", o1, "-O", o2,
            *self.fastp_options(),
            "--html", html,
            "--json", json,
        ])

    def run(self, sample: str) -> bool:
        self.tool.mkdir(str(self.trimmed_reads(sample)[0].parent))
        self.tool.mkdir(str(self.reports_dir()))
        status = self.tool.exec_cmd(self.build_cmd(sample), sample)
        if status != 0:
            self.tool.write_log(f"[{sample}] fastp failed with exit code {status}", "error")
        return status == 0

    def finalize(self, results: Dict[str, TaskResult]) -> None:
        """Optional MultiQC summary over all fastp reports."""
        if not self.option("multiqc", True):
            return
        multiqc = self.binary("multiqc", "multiqc")
        if self.tool.which(multiqc) is None:
            self.tool.write_log("multiqc not found in PATH - skipping summary report", "info")
            return
        self.tool.write_log("Generating MultiQC summary from fastp reports...", "info")
        out_dir = self.reports_dir().parent / "fastp_multiqc"
        status = self.tool.exec_cmd(quote_cmd([multiqc, self.reports_dir(), "-o", out_dir]), "summary")
        if status != 0:
            self.tool.write_log(f"MultiQC exited with status {status}", "warning")
