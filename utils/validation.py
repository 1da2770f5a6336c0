"""Request validation helpers."""
import re

from flask import request, jsonify
from utils.config import SESSION_ID_MAX_LEN, SUPPORTED_PERMISSION_MODES

# Characters that must never reach a filesystem path built from client input.
_PATH_HOSTILE_CHARS = re.compile(r'[<>:"|?*\x00-\x1f/\\]')


def _validate_name(value, label="name", max_len=120):
    if not isinstance(value, str):
        return f"{label} must be a string"
    name = value.strip()
    if not name:
        return f"{label} is required"
    if len(name) > max_len:
        return f"{label} must be {max_len} chars or fewer"
    if any(ch in name for ch in ["/", "\\", "\0"]):
        return f"{label} contains invalid characters"
    if name in {".", ".."}:
        return f"{label} is invalid"
    return None


def _validate_encoded_project_name(value):
    if not value or not isinstance(value, str):
        return "encoded project name is required"
    if _PATH_HOSTILE_CHARS.search(value):
        return "encoded project name contains invalid characters"
    if ".." in value:
        return "encoded project name is invalid"
    return None


def _validate_session_id(value):
    if not value or not isinstance(value, str):
        return "session id is required"
    if _PATH_HOSTILE_CHARS.search(value):
        return "session id contains invalid characters"
    if len(value) > SESSION_ID_MAX_LEN:
        return f"session id must be {SESSION_ID_MAX_LEN} chars or fewer"
    if value.startswith(".") or ".." in value:
        return "session id is invalid"
    return None


def _validate_string_list(value, label):
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(x, str) for x in value):
        return f"{label} must be a list of strings"
    return None


def _validate_permission_mode(value):
    if value is None:
        return None
    if not isinstance(value, str) or value not in SUPPORTED_PERMISSION_MODES:
        return "permissionMode is invalid"
    return None


def _require_json_body(allow_empty=False):
    body = request.get_json(silent=True)
    if body is None:
        if allow_empty:
            return {}, None
        return None, (jsonify({"error": "invalid or missing JSON body"}), 400)
    if not isinstance(body, dict):
        return None, (jsonify({"error": "JSON body must be an object"}), 400)
    return body, None
