import shlex
import threading
from pathlib import Path

import pytest

from srrcount.functions.pipeline_tools import tools


@pytest.fixture
def tool(tmp_path):
    """A tools instance logging under tmp_path/run, closed after the test."""
    t = tools(str(tmp_path / "run"), "test", threading.Lock())
    yield t
    t.close()


@pytest.fixture
def configure(tmp_path):
    work = tmp_path / "work"
    work.mkdir()
    return {
        "path": {
            "work_dir": str(work),
            "output_dir": str(tmp_path / "output"),
            "lock_dir": str(tmp_path / "locks"),
            "reports_dir": str(tmp_path / "reports" / "fastp"),
            "scratch": {
                "fasterq": str(tmp_path / "scratch" / "fasterq"),
                "star_primary": str(tmp_path / "scratch" / "ssd"),
                "star_secondary": str(tmp_path / "scratch" / "hdd"),
                "featurecounts": str(tmp_path / "scratch" / "fc"),
            },
        },
        "args": {"pool_size": 1, "required_ram_gb": 50, "memory_poll_interval": 300},
        "others": {"multiqc": False},
    }


@pytest.fixture
def paths(tmp_path):
    refs = tmp_path / "refs"
    (refs / "star_index").mkdir(parents=True)
    (refs / "annotation.gtf").write_text("chr1\tHAVANA\texon\t1\t100\t.\t+\t.\tgene_id \"G1\";\n")
    (refs / "annotation.bed").write_text("chr1\t0\t100\tT1\t0\t+\n")
    return {
        "env": {"bin_dirs": []},
        "tools": {},
        "database": {
            "star_index": str(refs / "star_index"),
            "gtf": str(refs / "annotation.gtf"),
            "bed": str(refs / "annotation.bed"),
        },
    }


def touch(path, content="data"):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def argv_of(cmd):
    """Split a quoted command string back into its arguments."""
    return shlex.split(cmd)


def option_value(argv, flag):
    return argv[argv.index(flag) + 1]
