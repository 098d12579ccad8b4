# coding=utf-8
import os
import queue
import shutil
import logging
import subprocess
from datetime import datetime, timedelta
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Optional, Dict, Iterable, List
from pathlib import Path

import yaml

from srrcount.functions.errors import ConfigurationError

LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class tools:
    def __init__(self, sys_path: str, log_type: str, log_lock, log_queue=None):
        """
        Initialize the tools class with shared resources.

        Args:
            sys_path: Base working path used for logs and artifacts.
            log_type: Stage name used to label logs.
            log_lock: A threading/multiprocessing lock used to serialize status updates.
            log_queue: Queue feeding the single log writer. Pass a Manager queue when the
                object is shipped to pool workers; a local queue is created otherwise.
        """
        # Execution status tracking
        self.failed_cmds_allSamples = {}
        self.done_cmds_allSamples = {}
        self.run_cmds_allSamples = {}
        self.samples: List[str] = []

        self.sys_path = str(sys_path).rstrip("/") + "/"
        self.log_type = log_type
        self.log_lock = log_lock
        self.log_queue = log_queue if log_queue is not None else queue.Queue()

        # Logging paths (timestamped session)
        self.start_date = datetime.now().strftime("%Y-%m-%d_%H:%M:%S")
        self.start_log = f"{self.sys_path}log/{self.start_date}/{self.log_type}_start_{self.start_date}.log"
        self.cmd_log_dir = f"{self.sys_path}log/{self.start_date}/detail/"

        self.mkdir(f"{self.sys_path}log/{self.start_date}")

        # Workers only enqueue records; the listener below is the only writer
        # of the console and the stage log file.
        self.logger = logging.getLogger(f"pipeline_logger::{self.sys_path}::{self.start_date}::{self.log_type}")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        self._listener: Optional[QueueListener] = None

        if not self.logger.handlers:
            formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.DEBUG)
            console_handler.setFormatter(formatter)

            file_handler = logging.FileHandler(self.start_log)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)

            self.logger.addHandler(QueueHandler(self.log_queue))
            self._listener = QueueListener(self.log_queue, console_handler, file_handler)
            self._listener.start()

        # Default environment inherited from current process (can be extended/overridden)
        self.default_env: Dict[str, str] = os.environ.copy()

    def __getstate__(self):
        state = self.__dict__.copy()
        state["_listener"] = None
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        # Spawned workers get a bare logger back from pickling.
        if not self.logger.handlers:
            self.logger.setLevel(logging.DEBUG)
            self.logger.propagate = False
            self.logger.addHandler(QueueHandler(self.log_queue))

    def close(self) -> None:
        """Flush queued records and stop the log writer."""
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
            for handler in list(self.logger.handlers):
                self.logger.removeHandler(handler)
                handler.close()

    # ---------------------------
    # Environment helpers
    # ---------------------------
    def set_path_prefix(self, *dirs: str) -> None:
        """Prepend one or more directories (e.g. a conda env's bin/) to PATH in self.default_env."""
        existing = self.default_env.get("PATH", "")
        prefix = ":".join(str(d).rstrip("/") for d in dirs if d)
        self.default_env["PATH"] = (prefix + ":" + existing) if prefix else existing

    def which(self, name: str) -> Optional[str]:
        """Resolve a binary against the PATH the tools will actually run with."""
        return shutil.which(name, path=self.default_env.get("PATH"))

    def check_tools(self, names: Iterable[str]) -> None:
        """Raise ConfigurationError listing every binary that cannot be resolved."""
        missing = [n for n in names if n and self.which(n) is None]
        if missing:
            raise ConfigurationError(f"Required tools not found in PATH: {', '.join(missing)}")

    # ---------------------------
    # Command execution
    # ---------------------------
    def exec_cmd(
        self,
        cmd: str,
        sample: str,
        flag: Optional[Any] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> int:
        """
        Execute a shell command, track its status and return its exit code.

        Args:
            cmd: Shell command string executed with `shell=True`.
            sample: Sample identifier used for per-sample logs.
            flag: Optional suffix to disambiguate the command name in logs.
            env: Environment variables to use for this command (inherits default if None).
        """
        parts = cmd.strip().split()
        cmd_name = Path(parts[0]).name.replace(".py", "") if parts else "cmd"
        if flag is not None:
            cmd_name = f"{cmd_name}_{flag}"

        # Per-sample log path; stdout and stderr of the tool both land here
        current_date = datetime.now().strftime("%Y-%m-%d_%H:%M:%S")
        self.cmd_log = f"{self.cmd_log_dir}{sample}/{current_date}_{self.log_type}_{cmd_name}.log"
        self.mkdir(f"{self.cmd_log_dir}{sample}/")
        self.write2shell(cmd, f"{self.log_type}_commands")

        with self.log_lock:
            self.status(self.run_cmds_allSamples, sample, cmd_name, "run", "", cmd)

        start = datetime.now()
        with open(self.cmd_log, "a") as logfile:
            result = subprocess.call(
                cmd,
                shell=True,
                stdout=logfile,
                stderr=subprocess.STDOUT,
                env=(env if env is not None else self.default_env),
            )
        end = datetime.now()

        with self.log_lock:
            if sample in self.run_cmds_allSamples and cmd_name in self.run_cmds_allSamples[sample]:
                self.run_cmds_allSamples[sample].remove(cmd_name)

            run_time = self.print_time(end - start)
            if result:
                self.status(self.failed_cmds_allSamples, sample, cmd_name, "failed", run_time, cmd)
            else:
                self.status(self.done_cmds_allSamples, sample, cmd_name, "done", run_time, cmd)
        return result

    # ---------------------------
    # Shared state / reporting
    # ---------------------------
    def sharing_variable(self, manager, samples: List[str]) -> None:
        """
        Initialize shared structures (Manager dicts/lists) for multiprocessing.

        Args:
            manager: multiprocessing.Manager instance.
            samples: List of sample identifiers to track.
        """
        self.samples = list(samples)

        self.failed_cmds_allSamples = manager.dict()
        self.done_cmds_allSamples = manager.dict()
        self.run_cmds_allSamples = manager.dict()

        # "summary" collects batch-level commands such as MultiQC
        for sample in self.samples + ["summary"]:
            self.failed_cmds_allSamples[sample] = manager.list()
            self.done_cmds_allSamples[sample] = manager.list()
            self.run_cmds_allSamples[sample] = manager.list()

    def status(
        self,
        cmds_dict,
        sample: str,
        info: str,
        info_type: str,
        run_time: str,
        cmd: str,
    ) -> None:
        """
        Update a status dictionary and log progress.

        Args:
            cmds_dict: One of {run/done/failed} dicts.
            sample: Sample identifier.
            info: Status descriptor for this command.
            info_type: One of {"run", "done", "failed"}.
            run_time: Formatted runtime string.
            cmd: Original command string.
        """
        entry = info if (run_time == "0h0m0s" or info_type == "run") else f"{info} {run_time}"
        if sample in cmds_dict:
            cmds_dict[sample].append(entry)
        else:
            cmds_dict[sample] = [entry]

        if info_type == "run":
            progress = ""
            if sample in self.samples:
                progress = f" ({self.samples.index(sample) + 1}/{len(self.samples)})"
            self.logger.info(f"[{sample}] Running {info}{progress}: {cmd}")
        elif info_type == "failed":
            self.logger.error(f"[{sample}] {info} failed after {run_time}. See {self.cmd_log}")
        elif info_type == "done":
            self.logger.info(f"[{sample}] {info} completed in {run_time}")

    def summary(self, results: Optional[Dict[str, Any]] = None) -> None:
        """Emit a final summary of per-sample outcomes and failed commands."""
        if results:
            counts: Dict[str, int] = {}
            for outcome in results.values():
                key = str(getattr(outcome, "value", outcome))
                counts[key] = counts.get(key, 0) + 1
            detail = ", ".join(f"{k}: {v}" for k, v in sorted(counts.items()))
            self.logger.info(f"{self.log_type} summary ({len(results)} samples) - {detail}")

        failed_message = "\n".join(
            f"{key}-{list(self.failed_cmds_allSamples[key])}"
            for key in self.failed_cmds_allSamples.keys()
            if len(self.failed_cmds_allSamples[key]) != 0
        )
        if failed_message:
            self.logger.error(f"all failed cmds:\n{failed_message}")

    # ---------------------------
    # Misc utilities
    # ---------------------------
    def write_log(self, text: str, type_log: str) -> None:
        """Write a message at the requested log level."""
        if type_log == "info":
            self.logger.info(text)
        elif type_log == "error":
            self.logger.error(text)
        elif type_log in ("warn", "warning"):
            self.logger.warning(text)
        else:
            self.logger.debug(text)

    def mkdir(self, path: str) -> None:
        """Create a directory if it does not exist (idempotent)."""
        os.makedirs(path, exist_ok=True)

    def print_pool_error(self, value: Any) -> None:
        """Log an error object originating from a multiprocessing pool."""
        self.logger.error(f"error: {value}")

    def cp_configure(self, file: Any, name: str = "configure") -> None:
        """
        Persist a copy of an (already loaded) YAML document for reproducibility.
        """
        out = f"{self.sys_path}log/{self.start_date}/{self.log_type}_{name}_{self.start_date}.yaml"
        with open(out, "w") as f:
            yaml.safe_dump(file, f, sort_keys=False)

    def print_time(self, delta: timedelta) -> str:
        """
        Format a timedelta into 'XdXhXmXs' (days omitted if zero).
        """
        total_seconds = int(delta.total_seconds())
        days = total_seconds // 86400
        remaining = total_seconds % 86400
        hour = remaining // 3600
        minutes = (remaining % 3600) // 60
        seconds = remaining % 60
        if days > 0:
            return f"{days}d{hour}h{minutes}m{seconds}s"
        return f"{hour}h{minutes}m{seconds}s"

    def _load_yaml(self, yaml_path: Path) -> Dict[str, Any]:
        if not yaml_path.is_file():
            raise ConfigurationError(f"YAML file not found: {yaml_path}")
        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{yaml_path} must contain a mapping at the top level")
        return data

    def _default_yaml(self, name: str) -> Path:
        from importlib.resources import files
        return Path(str(files("srrcount") / "configures" / name))

    def get_configure(self, args_configure: Optional[str]) -> Dict[str, Any]:
        """
        Load the configure YAML.

        Behavior:
          - If args_configure is None/empty: load the packaged configures/rnaseq_configure.yaml
          - Otherwise: load the YAML at args_configure
        A copy of the loaded YAML is saved to the run log directory for reproducibility.
        """
        cfg_path = Path(args_configure) if args_configure else self._default_yaml("rnaseq_configure.yaml")
        configure = self._load_yaml(cfg_path)
        self.cp_configure(configure)
        return configure

    def _abspath_like(self, base_dir: Path, v: Any) -> Any:
        """
        If v is a string path that begins with ../ or ./, make it absolute relative to base_dir.
        """
        if isinstance(v, str) and (v.startswith("../") or v.startswith("./")):
            return str((base_dir / v).resolve())
        return v

    def _map_paths_recursive(self, node: Any, conv) -> Any:
        """Recursively apply conv() to all leaf values in nested dict/list."""
        if isinstance(node, dict):
            return {k: self._map_paths_recursive(v, conv) for k, v in node.items()}
        if isinstance(node, list):
            return [self._map_paths_recursive(v, conv) for v in node]
        return conv(node)

    def get_paths(self, args_paths: Optional[str]) -> Dict[str, Any]:
        """
        Load the paths YAML (tool binaries, references, extra bin dirs).

        "./" and "../" entries are resolved against the YAML's own directory,
        the extra bin dirs are prepended to PATH, and the resolved document is
        persisted next to the run log.
        """
        yaml_path = Path(args_paths).resolve() if args_paths else self._default_yaml("paths.yaml")
        paths = self._load_yaml(yaml_path)

        base = yaml_path.parent
        paths = self._map_paths_recursive(paths, lambda v: self._abspath_like(base, v))

        bin_dirs = (paths.get("env") or {}).get("bin_dirs") or []
        if bin_dirs:
            self.set_path_prefix(*bin_dirs)

        self.cp_configure(paths, "paths_resolved")
        return paths

    def write2shell(self, cmd: str, fileName: str) -> str:
        """
        Append a command to a shell script under the current run's log directory.

        Returns:
            Absolute path to the created/updated shell script.
        """
        script_path = f"{self.sys_path}log/{self.start_date}/{fileName}.sh"
        self.mkdir(os.path.dirname(script_path))
        with open(script_path, "a") as f:
            f.write(f"{cmd}\n")
        return script_path
