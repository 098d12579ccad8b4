# coding=utf-8
import os
import shlex
from pathlib import Path
from typing import Iterable, Iterator, List, Union

import psutil

from srrcount.functions.errors import ConfigurationError

PathLike = Union[str, Path]

GIB = 1024 ** 3


def read_sample_list(list_file: PathLike) -> Iterator[str]:
    """
    Yield sample identifiers from a newline-delimited list file, one at a time.

    Blank lines and lines starting with '#' are ignored; surrounding
    whitespace is stripped. A missing list file is a configuration error.
    """
    list_file = Path(list_file)
    if not list_file.is_file():
        raise ConfigurationError(f"Sample list not found: {list_file}")

    with open(list_file, "r") as fh:
        for line in fh:
            token = line.strip()
            if not token or token.startswith("#"):
                continue
            yield token


def discover_samples(work_dir: PathLike, pattern: str = "SRR*") -> List[str]:
    """Return the names of sample directories under work_dir matching pattern, sorted."""
    work_dir = Path(work_dir)
    if not work_dir.is_dir():
        raise ConfigurationError(f"Working directory not found: {work_dir}")
    return sorted(p.name for p in work_dir.glob(pattern) if p.is_dir())


def exists_nonempty(p: PathLike) -> bool:
    p = Path(p)
    return p.is_file() and p.stat().st_size > 0


def all_exist(paths: Iterable[PathLike]) -> bool:
    return all(os.path.isfile(p) for p in paths)


def all_nonempty(paths: Iterable[PathLike]) -> bool:
    paths = list(paths)
    return bool(paths) and all(exists_nonempty(p) for p in paths)


def quote_cmd(cmd: Iterable[Union[str, int, float, Path]]) -> str:
    """Join argv-style parts into a shell string with every part quoted."""
    return " ".join(shlex.quote(str(c)) for c in cmd)


def available_memory_gb() -> int:
    """Available memory in whole GiB (the 'available' column of `free -g`)."""
    return int(psutil.virtual_memory().available // GIB)
