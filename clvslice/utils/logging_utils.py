# clvslice/utils/logging_utils.py
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from rich.console import Console
from rich.logging import RichHandler
from tqdm import tqdm


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Configure the package logger with rich console output and optional file output."""
    logger = logging.getLogger("clvslice")
    logger.setLevel(level)
    logger.propagate = False  # Avoid duplicate handlers

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    rh = RichHandler(console=Console(stderr=True), show_time=True, show_path=False, markup=False)
    rh.setLevel(level)
    logger.addHandler(rh)

    if log_file:
        parent = os.path.dirname(log_file)
        if parent:
            os.makedirs(parent, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(fh)

    logger.debug("Logger initialized.")
    return logger


@dataclass
class Timer:
    """Context timer for measuring code block durations."""
    name: str = "task"
    logger: Optional[logging.Logger] = None
    start: float = 0.0
    elapsed: float = 0.0

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        if self.logger:
            self.logger.debug("[%s] started.", self.name)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed = time.perf_counter() - self.start
        if self.logger:
            if exc_type is None:
                self.logger.info("[%s] finished in %.3fs.", self.name, self.elapsed)
            else:
                self.logger.warning("[%s] errored after %.3fs.", self.name, self.elapsed)


def progress(iterable: Iterable, total: Optional[int] = None, desc: Optional[str] = None,
             disable: bool = False):
    """Wrap an iterable with a tqdm progress bar."""
    return tqdm(iterable, total=total, desc=desc, disable=disable, leave=False)


def log_config(logger: logging.Logger, cfg: Mapping) -> None:
    """Log configuration entries in a hierarchical layout."""
    def _walk(d: Mapping, prefix=""):
        for k in sorted(d.keys()):
            v = d[k]
            key = f"{prefix}.{k}" if prefix else k
            if isinstance(v, Mapping):
                logger.info("%s:", key)
                _walk(v, key)
            else:
                logger.info("%s: %r", key, v)
    logger.info("=== Effective Config ===")
    _walk(cfg)
    logger.info("========================")
