from __future__ import annotations

import logging
from pathlib import Path


def setup_logging(level: str, logfile: str = ""):
    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(log_level)

    # Clear existing handlers so repeated CLI invocations in one process don't duplicate output.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] [%(name)s] %(message)s")

    if logfile:
        Path(logfile).expanduser().parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(Path(logfile).expanduser(), encoding="utf-8")
        fh.setLevel(log_level)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(fmt)
    root.addHandler(ch)

    root.debug("logging initialized")


def make_log_func():
    """Build the `log_func(level, module, message, detail)` callable the sync engine expects."""

    def log_func(level: str, module: str, message: str, detail: str | None = None):
        logging.getLogger(module).log(
            getattr(logging, level.upper(), logging.INFO),
            f"{message} {detail or ''}".strip(),
        )

    return log_func
