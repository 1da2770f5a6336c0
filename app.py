import os
import json
import time

from flask import Blueprint, Flask, Response, current_app, jsonify

from utils.config import (
    logger,
    APP_START_TIME,
    CLAUDE_PROJECTS_DIR,
    CLAUDE_CONFIG_PATH,
    HEARTBEAT_INTERVAL_SEC,
    PREVIEW_LENGTH,
    QUESTION_TIMEOUT_SEC,
)
from utils.errors import (
    RelayError,
    ERR_INVALID_INPUT,
    ERR_MISSING_REQUIRED_FIELD,
    ERR_CONFLICT,
    ERR_REQUEST_NOT_FOUND,
    ERR_QUESTION_NOT_FOUND,
    ERR_OPERATION_FAILED,
)
from utils.validation import (
    _validate_name,
    _validate_session_id,
    _validate_string_list,
    _validate_permission_mode,
    _require_json_body,
)
from core.registry import RequestRegistry
from core.questions import QuestionBroker
from core.bridge import ChatRequest, SessionStreamBridge
from providers.claude import ClaudeAgent
from history.loader import _list_conversations, _load_conversation
from history.projects import _list_projects

API = Blueprint("api", __name__)


def _format_duration(seconds):
    seconds = int(max(0, seconds))
    mins, sec = divmod(seconds, 60)
    hrs, mins = divmod(mins, 60)
    days, hrs = divmod(hrs, 24)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hrs:
        parts.append(f"{hrs}h")
    if mins:
        parts.append(f"{mins}m")
    parts.append(f"{sec}s")
    return " ".join(parts)


def _safe_cwd(candidate):
    if candidate:
        return os.path.abspath(candidate)
    return None


def _error_response(message, code=None, details=None, status=400):
    """
    Standard error response format for all API endpoints.

    Args:
        message: Human-readable error message
        code: Optional error code (e.g., "INVALID_INPUT", "NOT_FOUND")
        details: Optional additional error details (dict)
        status: HTTP status code (default 400)

    Returns:
        Tuple of (jsonify response, status code)
    """
    payload = {"error": message}
    if code:
        payload["code"] = code
    if details:
        payload["details"] = details
    return jsonify(payload), status


def _handle_relay_error(exc):
    return _error_response(exc.message, code=exc.code, details=exc.details, status=exc.status)


def _relay():
    return current_app.extensions["relay"]


def _parse_chat_request(body):
    """Build a ChatRequest from a JSON body, or return (None, error message, code)."""
    request_id = body.get("requestId")
    if request_id is None:
        return None, "requestId is required", ERR_MISSING_REQUIRED_FIELD
    name_err = _validate_name(request_id, "requestId")
    if name_err:
        return None, name_err, ERR_INVALID_INPUT
    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        return None, "message must be a non-empty string", ERR_MISSING_REQUIRED_FIELD
    session_id = body.get("sessionId") or None
    if session_id is not None:
        session_err = _validate_session_id(session_id)
        if session_err:
            return None, session_err, ERR_INVALID_INPUT
    working_directory = body.get("workingDirectory") or None
    if working_directory is not None and not isinstance(working_directory, str):
        return None, "workingDirectory must be a string", ERR_INVALID_INPUT
    for label in ("allowedTools", "disallowedTools"):
        list_err = _validate_string_list(body.get(label), label)
        if list_err:
            return None, list_err, ERR_INVALID_INPUT
    mode_err = _validate_permission_mode(body.get("permissionMode"))
    if mode_err:
        return None, mode_err, ERR_INVALID_INPUT
    chat_request = ChatRequest(
        request_id.strip(),
        message,
        session_id=session_id,
        working_directory=_safe_cwd(working_directory),
        permission_mode=body.get("permissionMode"),
        allowed_tools=body.get("allowedTools"),
        disallowed_tools=body.get("disallowedTools"),
    )
    return chat_request, None, None


@API.get("/health")
def health():
    registry = _relay()["registry"]
    return jsonify({
        "status": "ok",
        "uptime": _format_duration(time.time() - APP_START_TIME),
        "active_requests": len(registry.active_ids()),
    })


@API.post("/api/chat")
def chat():
    body, err = _require_json_body()
    if err:
        return err
    chat_request, message, code = _parse_chat_request(body)
    if chat_request is None:
        return _error_response(message, code=code, status=400)
    relay = _relay()
    if relay["registry"].is_active(chat_request.request_id):
        return _error_response(
            "request is already active",
            code=ERR_CONFLICT,
            details={"requestId": chat_request.request_id},
            status=409,
        )
    logger.debug(f"[Chat] Received chat request {chat_request.request_id} session={chat_request.session_id}")
    bridge = relay["bridge"]

    def generate():
        try:
            for record in bridge.stream(chat_request):
                yield json.dumps(record, default=str) + "\n"
        except Exception as exc:
            logger.error(f"[Chat] Stream failed for {chat_request.request_id}: {exc}", exc_info=True)
            yield json.dumps({"type": "error", "error": str(exc)}) + "\n"

    return Response(
        generate(),
        mimetype="application/x-ndjson",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@API.post("/api/abort/<request_id>")
def abort_request(request_id):
    registry = _relay()["registry"]
    logger.debug(f"[Abort] Abort attempt for request: {request_id}")
    logger.debug(f"[Abort] Active requests: {registry.active_ids()}")
    if registry.cancel(request_id):
        logger.debug(f"[Abort] Aborted request: {request_id}")
        return jsonify({"success": True, "message": "Request aborted"})
    return _error_response("Request not found or already completed", code=ERR_REQUEST_NOT_FOUND, status=404)


@API.post("/api/answer/<request_id>")
def submit_answer(request_id):
    body, err = _require_json_body()
    if err:
        return err
    question_id = body.get("questionId")
    if not isinstance(question_id, str) or not question_id:
        return _error_response("questionId is required", code=ERR_MISSING_REQUIRED_FIELD, status=400)
    if "answers" not in body:
        return _error_response("answers is required", code=ERR_MISSING_REQUIRED_FIELD, status=400)
    logger.debug(f"[Answer] Answer received for request: {request_id}, question: {question_id}")
    if _relay()["broker"].resolve(request_id, question_id, body.get("answers")):
        return jsonify({"success": True})
    return _error_response("Question not found or already answered", code=ERR_QUESTION_NOT_FOUND, status=404)


@API.get("/api/projects")
def list_projects():
    relay = _relay()
    try:
        projects = _list_projects(relay["config_path"], relay["projects_dir"])
    except Exception as exc:
        logger.error(f"[Projects] Error reading projects: {exc}", exc_info=True)
        return _error_response("Failed to read projects", code=ERR_OPERATION_FAILED, status=500)
    return jsonify({"projects": projects})


@API.get("/api/projects/<encoded_project_name>/histories")
def list_histories(encoded_project_name):
    relay = _relay()
    try:
        conversations = _list_conversations(relay["projects_dir"], encoded_project_name, relay["preview_length"])
    except RelayError:
        raise
    except Exception as exc:
        logger.error(f"[History] Error fetching conversation histories: {exc}", exc_info=True)
        return _error_response(
            "Failed to fetch conversation histories",
            code=ERR_OPERATION_FAILED,
            details={"message": str(exc)},
            status=500,
        )
    return jsonify({"conversations": conversations})


@API.get("/api/projects/<encoded_project_name>/histories/<session_id>")
def get_conversation(encoded_project_name, session_id):
    relay = _relay()
    try:
        conversation = _load_conversation(relay["projects_dir"], encoded_project_name, session_id)
    except RelayError:
        raise
    except Exception as exc:
        logger.error(f"[History] Error fetching conversation details: {exc}", exc_info=True)
        return _error_response(
            "Failed to fetch conversation details",
            code=ERR_OPERATION_FAILED,
            details={"message": str(exc)},
            status=500,
        )
    return jsonify(conversation)


def create_app(
    agent=None,
    registry=None,
    broker=None,
    projects_dir=CLAUDE_PROJECTS_DIR,
    config_path=CLAUDE_CONFIG_PATH,
    heartbeat_interval=HEARTBEAT_INTERVAL_SEC,
    question_timeout=QUESTION_TIMEOUT_SEC,
    preview_length=PREVIEW_LENGTH,
):
    """Build the Flask app; the registry and broker are owned here and shared by the endpoints."""
    app = Flask(__name__)
    registry = registry or RequestRegistry()
    broker = broker or QuestionBroker()
    bridge = SessionStreamBridge(
        agent or ClaudeAgent(),
        registry,
        broker,
        heartbeat_interval=heartbeat_interval,
        question_timeout=question_timeout,
    )
    app.extensions["relay"] = {
        "registry": registry,
        "broker": broker,
        "bridge": bridge,
        "projects_dir": projects_dir,
        "config_path": config_path,
        "preview_length": preview_length,
    }
    app.register_blueprint(API)
    app.register_error_handler(RelayError, _handle_relay_error)
    return app


APP = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "5025"))
    host = os.environ.get("HOST", "127.0.0.1")
    APP.run(host=host, port=port, debug=False, threaded=True)
