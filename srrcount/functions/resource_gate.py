# coding=utf-8
"""
Memory gate in front of resource-heavy tools (STAR, samtools sort).

The gate only checks; it does not reserve. Two workers can pass the check at
the same moment and then jointly exceed physical memory.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from srrcount.functions.errors import ResourceWaitTimeout
from srrcount.functions.utils import available_memory_gb

DEFAULT_POLL_INTERVAL = 300


class ResourceGate:
    """
    Block until at least `required_gb` GiB of memory is available, then run.

    Args:
        tool: `tools` instance used for logging and command execution.
        required_gb: Default threshold in whole GiB.
        interval: Seconds to sleep between polls.
        max_wait: Optional upper bound on the total time slept; None waits forever.
        cancel: Optional token with an `is_set()` method; checked before each sleep.
        probe: Callable returning available memory in GiB.
        sleep: Callable used to wait between polls.
    """

    def __init__(
        self,
        tool,
        required_gb: int,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: Optional[float] = None,
        cancel: Any = None,
        probe: Callable[[], int] = available_memory_gb,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.tool = tool
        self.required_gb = int(required_gb)
        self.interval = interval
        self.max_wait = max_wait
        self.cancel = cancel
        self.probe = probe
        self.sleep = sleep

    def wait(self, required_gb: Optional[int] = None, sample: Optional[str] = None) -> int:
        """Poll until the threshold is met; return the number of polls taken."""
        required = self.required_gb if required_gb is None else int(required_gb)
        prefix = f"[{sample}] " if sample else ""
        waited = 0.0
        polls = 0
        while True:
            polls += 1
            free_gb = self.probe()
            if free_gb >= required:
                return polls

            if self.cancel is not None and self.cancel.is_set():
                raise ResourceWaitTimeout(f"{prefix}memory wait cancelled", sample)
            if self.max_wait is not None and waited + self.interval > self.max_wait:
                raise ResourceWaitTimeout(
                    f"{prefix}gave up waiting for {required} GB after {waited:.0f} seconds "
                    f"({free_gb} GB available)",
                    sample,
                )

            self.tool.write_log(
                f"{prefix}Not enough free memory ({free_gb} GB available, need >= {required} GB). "
                f"Waiting {self.interval:g} seconds...",
                "warning",
            )
            self.sleep(self.interval)
            waited += self.interval

    def invoke(
        self,
        cmd: str,
        sample: str,
        required_gb: Optional[int] = None,
        flag: Optional[Any] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> int:
        """Wait for memory, then launch `cmd` once and return its exit status."""
        self.wait(required_gb, sample)
        return self.tool.exec_cmd(cmd, sample, flag, env=env)
