from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

from .constants import DEFAULT_STATE_PATH
from .sessions import SessionDirectory
from .speech import SharedSpeech

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def load_state_data(path: Optional[str] = None) -> Dict[str, Any]:
    target = path or DEFAULT_STATE_PATH
    try:
        with open(target, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning(f"Could not read state file {target}, starting fresh: {exc}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring state file {target}: expected an object")
        return {}
    return data


def load_directory(
    path: Optional[str] = None,
    speech: Optional[SharedSpeech] = None,
    *,
    auto_speak: bool = True,
) -> SessionDirectory:
    data = load_state_data(path)
    return SessionDirectory.from_dict(data.get("directory"), speech, auto_speak=auto_speak)


def serialize_state(directory: SessionDirectory) -> Dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "directory": directory.to_dict(),
    }


def save_state(directory: SessionDirectory, path: Optional[str] = None) -> str:
    target = path or DEFAULT_STATE_PATH
    os.makedirs(os.path.dirname(os.path.abspath(target)), exist_ok=True)
    tmp_path = f"{target}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(serialize_state(directory), handle, ensure_ascii=False, indent=2)
    os.replace(tmp_path, target)
    logger.debug(f"Saved state to {target}")
    return target
