from __future__ import annotations

import logging
import sys
from pathlib import Path

# Third-party loggers that are chatty at INFO (sampler progress, font lookup).
NOISY_LOGGERS = ("pymc", "pytensor", "matplotlib", "fontTools", "urllib3")


def configure_logging(*, out_dir: Path, level: str = "INFO", log_file: Path | None = None) -> Path:
    """Route all records to stdout and `<out_dir>/run.log`. Returns the log file path."""
    out_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_file or out_dir / "run.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    # Re-entry (e.g. repeated CLI runs in one interpreter) must not stack handlers.
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in (logging.StreamHandler(sys.stdout), logging.FileHandler(log_file, encoding="utf-8")):
        handler.setLevel(level)
        handler.setFormatter(fmt)
        root.addHandler(handler)

    if logging.getLevelName(level) != logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    return log_file
