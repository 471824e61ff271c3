from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

ENV_FILE_VAR = "SFREST_ENV_FILE"


def default_candidates() -> tuple[Path, ...]:
    """$SFREST_ENV_FILE if set, else .env / .dotenv in the working directory."""
    explicit = os.getenv(ENV_FILE_VAR)
    if explicit:
        return (Path(explicit).expanduser(),)
    cwd = Path.cwd()
    return (cwd / ".env", cwd / ".dotenv")


def load_env_files(
    candidates: Optional[Iterable[Path]] = None,
    *,
    quiet: bool = False,
) -> Optional[Path]:
    """Load SF_* settings from the first existing env file; return its path.

    Variables already present in the environment are not overridden.
    """
    if candidates is None:
        candidates = default_candidates()

    for path in candidates:
        if path.exists():
            load_dotenv(path, override=False)
            if not quiet:
                _logger.debug("Loaded environment variables from %s", path)
            return path

    if not quiet:
        _logger.debug("No env file found in %s", Path.cwd())
    return None
