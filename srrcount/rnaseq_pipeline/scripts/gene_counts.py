# coding=utf-8
"""
Per-gene tables from featureCounts' counts_unique.txt.

Keeps columns 1, 6, 7 and 8 of the featureCounts table (Geneid, Length,
gene_name and the count column), optionally restricted to a gene family,
and can merge every sample into one matrix after the batch.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import pandas as pd

from srrcount.functions.errors import ConfigurationError
from srrcount.functions.task_runner import Stage, TaskResult

KEEP_COLUMNS = (0, 5, 6, 7)


def load_gene_set(genes) -> Optional[Set[str]]:
    """Accept None, a list of identifiers, or a path to a one-per-line file."""
    if not genes:
        return None
    if isinstance(genes, str):
        path = Path(genes)
        if not path.is_file():
            raise ConfigurationError(f"Gene list not found: {path}")
        genes = [line.strip() for line in path.read_text().splitlines()]
    return {str(g).strip() for g in genes if str(g).strip() and not str(g).startswith("#")}


def extract_gene_counts(counts_file, genes: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """Read a featureCounts table and keep the gene id, length, name and count columns."""
    # line 1 is featureCounts' "# Program:..." banner, line 2 the header;
    # cells are copied verbatim, so an "NA" gene_name stays "NA"
    df = pd.read_csv(counts_file, sep="\t", skiprows=1, dtype=str, keep_default_na=False)
    df = df.iloc[:, [c for c in KEEP_COLUMNS if c < df.shape[1]]]

    if genes is not None:
        wanted = set(genes)
        gene_id = df.iloc[:, 0].astype(str)
        mask = gene_id.isin(wanted) | gene_id.str.split(".").str[0].isin(wanted)
        if "gene_name" in df.columns:
            mask |= df["gene_name"].astype(str).isin(wanted)
        df = df[mask]
    return df.reset_index(drop=True)


def merge_gene_counts(tables: Dict[str, Path]) -> pd.DataFrame:
    """One column of counts per sample, indexed by gene id."""
    columns = []
    for sample, path in tables.items():
        df = pd.read_csv(path, sep="\t")
        counts = df.set_index(df.columns[0]).iloc[:, -1].rename(sample)
        columns.append(counts)
    if not columns:
        return pd.DataFrame()
    merged = pd.concat(columns, axis=1).fillna(0)
    merged.index.name = "gene_id"
    return merged


class GeneCounts(Stage):
    name = "gene_counts"

    def settings(self) -> dict:
        return self.option("gene_counts") or {}

    def counts_dir(self) -> Path:
        return self.output_dir / "counts_unique"

    def required_inputs(self, sample: str) -> List[Path]:
        fc_dir = self.option("featurecounts_results_dir", "featureCounts")
        return [self.sample_dir(sample) / fc_dir / "counts_unique.txt"]

    def table_path(self, sample: str) -> Path:
        return self.counts_dir() / f"{sample}_gene_counts_unique.tsv"

    def expected_outputs(self, sample: str) -> List[Path]:
        return [self.table_path(sample)]

    def validate(self) -> None:
        load_gene_set(self.settings().get("genes"))

    def run(self, sample: str) -> bool:
        genes = load_gene_set(self.settings().get("genes"))
        df = extract_gene_counts(self.required_inputs(sample)[0], genes)
        self.tool.mkdir(str(self.counts_dir()))
        df.to_csv(self.table_path(sample), sep="\t", index=False)
        self.tool.write_log(f"[{sample}] Saved {len(df)} genes to {self.table_path(sample)}", "info")
        return True

    def finalize(self, results: Dict[str, TaskResult]) -> None:
        if not self.settings().get("merge", True):
            return
        tables = {
            s: self.table_path(s)
            for s, r in results.items()
            if r in (TaskResult.SUCCEEDED, TaskResult.SKIPPED_DONE) and self.table_path(s).is_file()
        }
        if not tables:
            return
        out = self.counts_dir() / "gene_counts_matrix.tsv"
        merge_gene_counts(tables).to_csv(out, sep="\t")
        self.tool.write_log(f"Merged {len(tables)} samples into {out}", "info")
