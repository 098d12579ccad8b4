# coding=utf-8
"""
Exceptions shared by the RNA-seq stages.

Per-sample problems (missing inputs, finished outputs, a held lock) are not
exceptions: they are reported as TaskResult values by the task runner. Only
the conditions below are raised.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base error carrying the sample (if any) it relates to."""

    def __init__(self, message: str, sample: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.sample = sample
        self.context = context or {}


class ConfigurationError(PipelineError):
    """A required file, key or binary is missing. Aborts the run before any sample starts."""


class ToolFailure(PipelineError):
    """An external tool returned a non-zero exit status."""

    def __init__(self, tool_name: str, returncode: int, sample: Optional[str] = None):
        super().__init__(f"{tool_name} exited with status {returncode}", sample, {"returncode": returncode})
        self.tool_name = tool_name
        self.returncode = returncode


class StrandednessParseError(PipelineError):
    """infer_experiment.py output did not contain both strand fractions."""


class ResourceWaitTimeout(PipelineError):
    """The memory gate gave up (max wait exceeded or cancelled)."""
