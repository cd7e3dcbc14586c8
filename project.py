"""
Project-local settings stored in ``.sidecar/config.json``.

A project is "fresh" while it is being created from scratch; the agent runs
in creation mode (no tool confirmations) until it is marked ready.
"""

import json
import logging
import os
from typing import Any, Dict

from config import app_config

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"


def _config_path(project_cwd: str) -> str:
    return os.path.join(project_cwd, app_config.state_dir_name, CONFIG_FILE)


def read_project_config(project_cwd: str) -> Dict[str, Any]:
    path = _config_path(project_cwd)
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable project config {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def write_project_config(project_cwd: str, data: Dict[str, Any]) -> None:
    path = _config_path(project_cwd)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")
    os.replace(tmp_path, path)


def is_project_fresh(project_cwd: str) -> bool:
    return bool(read_project_config(project_cwd).get("fresh", False))


def mark_project_ready(project_cwd: str) -> None:
    data = read_project_config(project_cwd)
    data["fresh"] = False
    write_project_config(project_cwd, data)
