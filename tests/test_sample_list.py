import types

import pytest

from srrcount.functions.errors import ConfigurationError
from srrcount.functions.utils import discover_samples, read_sample_list
from srrcount.rnaseq_pipeline.rnaseq import resolve_samples


class TestReadSampleList:

    def test_skips_blank_and_comment_lines(self, tmp_path):
        srr_list = tmp_path / "srr_ids.txt"
        srr_list.write_text("SRR001\n\n# held back\n  SRR002  \n\t\nSRR003")
        assert list(read_sample_list(srr_list)) == ["SRR001", "SRR002", "SRR003"]

    def test_yields_lazily(self, tmp_path):
        srr_list = tmp_path / "srr_ids.txt"
        srr_list.write_text("SRR001\nSRR002\n")
        it = read_sample_list(srr_list)
        assert isinstance(it, types.GeneratorType)
        assert next(it) == "SRR001"

    def test_missing_list_is_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            list(read_sample_list(tmp_path / "absent.txt"))


class TestSampleSources:

    def test_discover_sample_dirs(self, tmp_path):
        for name in ("SRR2", "SRR1", "notes"):
            (tmp_path / name).mkdir()
        (tmp_path / "SRR3.txt").write_text("")
        assert discover_samples(tmp_path) == ["SRR1", "SRR2"]

    def test_explicit_samples_win(self, tmp_path):
        configure = {"samples": ["A", 2], "path": {"srr_list": str(tmp_path / "absent.txt")}}
        assert resolve_samples(configure) == ["A", "2"]

    def test_list_file_then_work_dir(self, tmp_path):
        srr_list = tmp_path / "ids.txt"
        srr_list.write_text("SRR9\n")
        (tmp_path / "SRR1").mkdir()
        assert resolve_samples({"path": {"srr_list": str(srr_list), "work_dir": str(tmp_path)}}) == ["SRR9"]
        assert resolve_samples({"path": {"work_dir": str(tmp_path)}}) == ["SRR1"]

    def test_no_source_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            resolve_samples({"path": {}})
