import pickle
import re
import threading
from datetime import timedelta

import pytest

from conftest import touch
from srrcount.functions.errors import ConfigurationError
from srrcount.functions.pipeline_tools import tools


def test_exec_cmd_logs_and_returns_status(tmp_path):
    t = tools(str(tmp_path), "demo", threading.Lock())
    assert t.exec_cmd("echo hello", "S1") == 0
    assert t.exec_cmd("exit 3", "S1", flag="bad") == 3
    t.close()

    detail = list((tmp_path / "log" / t.start_date / "detail" / "S1").iterdir())
    assert any("hello" in p.read_text() for p in detail)

    lines = open(t.start_log).read().splitlines()
    assert all(re.match(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] ", line) for line in lines)
    assert any("[S1] Running echo" in line for line in lines)
    assert any("[S1] exit_bad failed" in line for line in lines)
    assert t.failed_cmds_allSamples["S1"][0].startswith("exit_bad")

    script = tmp_path / "log" / t.start_date / "demo_commands.sh"
    assert script.read_text() == "echo hello\nexit 3\n"


def test_check_tools_uses_prefixed_path(tmp_path, tool):
    bin_dir = tmp_path / "env" / "bin"
    exe = touch(bin_dir / "fakealigner", "#!/bin/sh\n")
    exe.chmod(0o755)
    with pytest.raises(ConfigurationError, match="fakealigner"):
        tool.check_tools(["fakealigner"])
    tool.set_path_prefix(str(bin_dir))
    tool.check_tools(["fakealigner"])


def test_paths_yaml_relative_entries(tmp_path, tool):
    cfg_dir = tmp_path / "cfg"
    touch(cfg_dir / "paths.yaml", "env:\n  bin_dirs: [./bin]\ndatabase:\n  gtf: ../refs/a.gtf\n  bed: /abs/a.bed\n")
    paths = tool.get_paths(str(cfg_dir / "paths.yaml"))
    assert paths["database"]["gtf"] == str((tmp_path / "refs" / "a.gtf").resolve())
    assert paths["database"]["bed"] == "/abs/a.bed"
    assert tool.default_env["PATH"].startswith(str((cfg_dir / "bin").resolve()) + ":")


def test_bad_yaml_is_configuration_error(tmp_path, tool):
    with pytest.raises(ConfigurationError):
        tool.get_configure(str(tmp_path / "missing.yaml"))
    touch(tmp_path / "list.yaml", "- a\n- b\n")
    with pytest.raises(ConfigurationError):
        tool.get_configure(str(tmp_path / "list.yaml"))


def test_packaged_defaults_load(tool):
    configure = tool.get_configure(None)
    assert configure["args"]["required_ram_gb"] == 50
    assert configure["others"]["strandedness"]["unstranded_eps"] == 0.1


def test_print_time(tool):
    assert tool.print_time(timedelta(seconds=3725)) == "1h2m5s"
    assert tool.print_time(timedelta(days=1, seconds=1)) == "1d0h0m1s"


def test_pickled_copy_keeps_logging(tmp_path):
    import multiprocessing
    mgr = multiprocessing.Manager()
    try:
        t = tools(str(tmp_path), "demo", mgr.Lock(), mgr.Queue())
        clone = pickle.loads(pickle.dumps(t))
        clone.write_log("from the clone", "info")
        t.close()
        assert "from the clone" in open(t.start_log).read()
    finally:
        mgr.shutdown()


def test_batch_level_commands_are_tracked(tmp_path):
    import multiprocessing
    mgr = multiprocessing.Manager()
    try:
        t = tools(str(tmp_path), "demo", mgr.Lock(), mgr.Queue())
        t.sharing_variable(mgr, ["S1"])
        assert t.exec_cmd("true", "summary") == 0
        assert t.exec_cmd("exit 2", "summary", flag="report") == 2
        t.close()
        assert list(t.done_cmds_allSamples["summary"]) == ["true"]
        assert list(t.failed_cmds_allSamples["summary"]) == ["exit_report"]
        assert list(t.run_cmds_allSamples["summary"]) == []
    finally:
        mgr.shutdown()


def test_unseeded_sample_status_is_kept(tool):
    tool.status(tool.done_cmds_allSamples, "S9", "pigz", "done", "0h1m0s", "pigz x")
    tool.status(tool.done_cmds_allSamples, "S9", "fastp", "done", "0h0m0s", "fastp x")
    assert tool.done_cmds_allSamples["S9"] == ["pigz 0h1m0s", "fastp"]
