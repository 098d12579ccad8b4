# coding=utf-8
"""
SRA archive -> gzipped paired FASTQ.

fasterq-dump writes into a sample-namespaced scratch directory (typically on
SSD), each FASTQ is compressed with pigz there and the .gz files are moved
back next to the archive. The scratch directory is always removed.
"""

import shutil
from pathlib import Path
from typing import List

from srrcount.functions.errors import ToolFailure
from srrcount.functions.task_runner import Stage
from srrcount.functions.utils import quote_cmd


class SraExtraction(Stage):
    name = "fasterq"
    tools_required = [("fasterq_dump", "fasterq-dump"), ("pigz", "pigz")]

    def required_inputs(self, sample: str) -> List[Path]:
        return [self.sample_dir(sample) / f"{sample}.sra"]

    def expected_outputs(self, sample: str) -> List[Path]:
        d = self.sample_dir(sample)
        return [d / f"{sample}_1.fastq.gz", d / f"{sample}_2.fastq.gz"]

    def scratch_root(self) -> Path:
        scratch = self.configure.get("path", {}).get("scratch", {}) or {}
        return Path(scratch.get("fasterq", self.work_dir / "fasterq_tmp"))

    def run(self, sample: str) -> bool:
        tool = self.tool
        fq_threads = int(self.arg("fasterq_threads", 10))
        pigz_threads = int(self.arg("pigz_threads", 4))
        tmp_dir = self.scratch_root() / sample
        sra = self.required_inputs(sample)[0]

        try:
            tool.mkdir(str(tmp_dir))
            tool.write_log(f"[{sample}] Running fasterq-dump to temporary directory {tmp_dir}", "info")
            status = tool.exec_cmd(quote_cmd([
                self.binary("fasterq_dump", "fasterq-dump"),
                "--split-files",
                "--threads", fq_threads,
                "--outdir", tmp_dir,
                "--temp", tmp_dir / "tmp",
                sra,
            ]), sample)
            if status != 0:
                raise ToolFailure("fasterq-dump", status, sample)

            fastqs = sorted(tmp_dir.glob(f"{sample}_*.fastq"))
            if not fastqs:
                tool.write_log(f"[{sample}] fasterq-dump produced no FASTQ files", "error")
                return False

            for fq in fastqs:
                tool.write_log(f"[{sample}] Compressing {fq.name} with pigz", "info")
                status = tool.exec_cmd(quote_cmd([self.binary("pigz", "pigz"), "-p", pigz_threads, fq]), sample)
                if status != 0:
                    raise ToolFailure(f"pigz ({fq.name})", status, sample)
                gz = fq.with_name(fq.name + ".gz")
                shutil.move(str(gz), str(self.sample_dir(sample) / gz.name))
            return True
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
