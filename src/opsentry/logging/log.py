# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/opsentry/logging/log.py

from __future__ import annotations

import logging
import sys
from pathlib import Path
from datetime import datetime, timezone
import uuid


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "opsentry",
    verbose: bool = False,
    log_to_file: bool = True,
) -> tuple[logging.Logger, str, Path | None]:
    """
    Initializes:
      - console handler (INFO, DEBUG with --verbose)
      - full-trace log file unless log_to_file is False (containers log to stdout)
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_path = None
    if log_to_file:
        if base_dir is None:
            base_dir = Path.home() / ".opsentry" / "logs"
        base_dir.mkdir(parents=True, exist_ok=True)

        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        log_path = base_dir / f"{name}-{ts}-{run_id}.log"

        # File = FULL TRACE
        fh = logging.FileHandler(log_path)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    logger.info("=== opsentry run started ===")
    logger.info(f"run_id={run_id}")
    if log_path:
        logger.info(f"log_file={log_path}")

    return logger, run_id, log_path
