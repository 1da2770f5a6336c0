"""Shared configuration, paths, and logging."""
import os
import pathlib
import logging
import time

LOG_FILE_PATH = os.environ.get("RELAY_LOG_FILE", "relay_debug.log")
LOG_LEVEL = os.environ.get("RELAY_LOG_LEVEL", "DEBUG").upper()

# Setup logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.DEBUG),
    format='%(asctime)s [%(levelname)s] %(message)s',
    handlers=[
        logging.FileHandler(LOG_FILE_PATH, mode='a')
    ]
)
logger = logging.getLogger(__name__)
logger.info("=" * 60)
logger.info("Relay app starting up")
logger.info("=" * 60)

APP_START_TIME = time.time()


def _get_home_dir():
    home = os.environ.get("RELAY_HOME")
    if home:
        return home
    try:
        return str(pathlib.Path.home())
    except RuntimeError:
        return None


def _get_float_env(key, default=None):
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"[Config] Ignoring non-numeric {key}={raw!r}")
        return default
    if value <= 0:
        return default
    return value


def _get_int_env(key, default):
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        logger.warning(f"[Config] Ignoring non-integer {key}={raw!r}")
        return default


HOME_DIR = _get_home_dir()
CLAUDE_PROJECTS_DIR = os.path.join(HOME_DIR, ".claude", "projects") if HOME_DIR else None
CLAUDE_CONFIG_PATH = os.path.join(HOME_DIR, ".claude.json") if HOME_DIR else None
CLAUDE_CLI_PATH = (os.environ.get("RELAY_CLAUDE_PATH") or "").strip() or None

HEARTBEAT_INTERVAL_SEC = _get_float_env("RELAY_HEARTBEAT_SEC", 10.0)
PREVIEW_LENGTH = _get_int_env("RELAY_PREVIEW_LENGTH", 100)
# None means a question waits until it is answered or the request is cancelled.
QUESTION_TIMEOUT_SEC = _get_float_env("RELAY_QUESTION_TIMEOUT_SEC")

SESSION_ID_MAX_LEN = 255
DEFAULT_PERMISSION_MODE = "bypassPermissions"
SUPPORTED_PERMISSION_MODES = {"default", "acceptEdits", "plan", "bypassPermissions"}
DEFAULT_ALLOWED_TOOLS = [
    "Bash",
    "Read",
    "Write",
    "Edit",
    "Glob",
    "Grep",
    "WebFetch",
    "WebSearch",
    "Task",
    "NotebookEdit",
]
ASK_USER_SERVER_NAME = "ask-user-webui"
ASK_USER_TOOL_NAME = "AskUserQuestion"
ASK_USER_SYSTEM_PROMPT = (
    "IMPORTANT: When you need to ask the user a question with options, use the "
    f"mcp__{ASK_USER_SERVER_NAME}__{ASK_USER_TOOL_NAME} tool. This is the correct tool "
    "for asking user questions in this web interface."
)
