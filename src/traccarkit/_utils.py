"""
Internal helper functions for the traccarkit client.

These functions are not part of the public API and may change without notice.
"""

from __future__ import annotations

import json
import logging
import random
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def sleep_with_jitter(seconds: float, jitter_factor: float = 0.1) -> None:
    """
    Sleep for the given duration with random jitter.

    Adds random variation to the sleep duration so that several clients
    backing off at the same moment do not hit the server in lockstep.

    Args:
        seconds: Base sleep duration in seconds.
        jitter_factor: Maximum percentage variation (default: 10%).

    Example:
        >>> sleep_with_jitter(2.0)  # Sleeps between 1.8 and 2.2 seconds
    """
    jitter = random.uniform(-jitter_factor, jitter_factor)
    sleep_time = max(0.0, seconds * (1 + jitter))
    time.sleep(sleep_time)


def save_json_file(data: dict[str, Any], file_path: Path) -> None:
    """
    Save data as JSON to the specified file path.

    The document is first written to a sibling temporary file and then moved
    into place, so readers never observe a half-written file.

    Args:
        data: Dictionary to serialize as JSON.
        file_path: Destination path for the JSON file.

    Raises:
        RuntimeError: If the file cannot be written (wraps the original exception).
    """
    tmp_path = file_path.with_name(f"{file_path.name}.tmp")
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with tmp_path.open(mode="w", encoding="utf-8") as file:
            json.dump(
                data, file,
                ensure_ascii=False, default=str
            )
        tmp_path.replace(file_path)
    except Exception as e:
        logger.error(
            f"❌ Error while writing JSON file to disk ({file_path.name}): {e}",
            exc_info=logger.isEnabledFor(logging.DEBUG)
        )
        raise RuntimeError(f"It's not possible to save JSON file in the disk ({file_path.name}): {e}") from e


def load_json_file(file_path: Path) -> dict[str, Any]:
    """
    Load a JSON document previously written by `save_json_file()`.

    Returns an empty dict when the file does not exist yet.

    Raises:
        RuntimeError: If the file exists but cannot be read or parsed.
    """
    if not file_path.exists():
        return {}
    try:
        with file_path.open(mode="r", encoding="utf-8") as file:
            data = json.load(file)
    except Exception as e:
        raise RuntimeError(f"It's not possible to read JSON file from the disk ({file_path.name}): {e}") from e

    if not isinstance(data, dict):
        raise RuntimeError(f"Unexpected JSON document in {file_path.name}: expected an object")
    return data


def is_network_exception(exc: BaseException) -> bool:
    """
    Determine if an exception indicates a connectivity or timeout failure.

    This is the single source of truth for telling transport failures apart
    from HTTP-level failures.

    Supported exceptions:
        - requests.Timeout / requests.ConnectionError: transport failures
        - TimeoutError / ConnectionError: Python built-ins
        - NetworkError: already classified transport failure
    """
    # Lazy imports to avoid circular dependencies
    import requests

    from traccarkit._errors import NetworkError

    network_exception_types = (
        requests.Timeout,
        requests.ConnectionError,
        TimeoutError,
        ConnectionError,
        NetworkError,
    )
    return isinstance(exc, network_exception_types)
