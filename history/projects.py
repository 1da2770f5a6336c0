"""Mapping project paths known to the agent to their history directories."""
import json
import os
import re

from utils.config import logger
from history.parser import _read_text_file
from utils.errors import NotFoundError

_ENCODE_CHARS = re.compile(r"[/\\:._]")


def _encode_project_path(project_path):
    """Encode an absolute project path the way the agent names its history directory."""
    normalized = project_path.rstrip("/")
    return _ENCODE_CHARS.sub("-", normalized)


def _load_agent_config(config_path):
    if not config_path:
        return {}
    try:
        data = json.loads(_read_text_file(config_path))
    except NotFoundError:
        return {}
    except (OSError, ValueError) as e:
        logger.warning(f"[Projects] Failed to read agent config {config_path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _list_projects(config_path, projects_dir):
    """List projects from the agent config whose history directory exists."""
    config = _load_agent_config(config_path)
    projects = config.get("projects")
    if not isinstance(projects, dict) or not projects_dir:
        return []
    try:
        existing = {entry.name for entry in os.scandir(projects_dir) if entry.is_dir()}
    except OSError:
        return []
    result = []
    for path in projects:
        encoded = _encode_project_path(path)
        if encoded in existing:
            result.append({"path": path, "encodedName": encoded})
    return result
