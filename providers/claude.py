"""Claude provider implementation over the Claude Agent SDK."""
import asyncio
import dataclasses
import json
import queue
import shutil
import threading

from utils.config import (
    logger,
    CLAUDE_CLI_PATH,
    DEFAULT_ALLOWED_TOOLS,
    DEFAULT_PERMISSION_MODE,
    ASK_USER_SERVER_NAME,
    ASK_USER_TOOL_NAME,
    ASK_USER_SYSTEM_PROMPT,
)
from utils.errors import AgentError
from core.questions import QuestionCancelled, QuestionTimeout
from providers.base import Agent, AgentInvocation, _drain_queue

ASK_USER_DESCRIPTION = (
    "Ask the user a question with multiple-choice options. Use this when you need clarification, "
    "want the user to choose between approaches, or need input to proceed. Each question can have "
    "2-4 options. The user can also provide free-text input via an 'Other' option that is always available."
)

ASK_USER_SCHEMA = {
    "type": "object",
    "properties": {
        "questions": {
            "type": "array",
            "minItems": 1,
            "maxItems": 4,
            "items": {
                "type": "object",
                "properties": {
                    "question": {"type": "string", "description": "The question to ask"},
                    "header": {"type": "string", "description": "Short label for the question (max 12 chars)"},
                    "options": {
                        "type": "array",
                        "minItems": 2,
                        "maxItems": 4,
                        "items": {
                            "type": "object",
                            "properties": {
                                "label": {"type": "string", "description": "Display text for this option (1-5 words)"},
                                "description": {"type": "string", "description": "Explanation of what this option means"},
                            },
                            "required": ["label", "description"],
                        },
                    },
                    "multiSelect": {"type": "boolean", "description": "Whether multiple options can be selected"},
                },
                "required": ["question", "header", "options", "multiSelect"],
            },
        }
    },
    "required": ["questions"],
}

_MESSAGE_TYPES = {
    "AssistantMessage": "assistant",
    "UserMessage": "user",
    "SystemMessage": "system",
    "ResultMessage": "result",
    "StreamEvent": "stream_event",
}

# Fields the CLI nests under "message"; any other extra field stays top-level.
_INNER_MESSAGE_FIELDS = {"id", "usage", "stop_reason", "stop_sequence"}
_MAPPED_MESSAGE_FIELDS = {"content", "model", "parent_tool_use_id"}

_BLOCK_TYPES = {
    "TextBlock": "text",
    "ThinkingBlock": "thinking",
    "ToolUseBlock": "tool_use",
    "ToolResultBlock": "tool_result",
}


def _resolve_claude_path():
    if not CLAUDE_CLI_PATH:
        return None
    resolved = shutil.which(CLAUDE_CLI_PATH)
    if not resolved:
        logger.warning(f"[Claude] Configured CLI not found: {CLAUDE_CLI_PATH}; using SDK default")
    return resolved


def _block_to_dict(block):
    if isinstance(block, dict):
        return block
    payload = dataclasses.asdict(block) if dataclasses.is_dataclass(block) else {"value": str(block)}
    payload["type"] = _BLOCK_TYPES.get(type(block).__name__, "unknown")
    return payload


def _extra_fields(message):
    if not dataclasses.is_dataclass(message):
        return []
    extras = []
    for f in dataclasses.fields(message):
        if f.name in _MAPPED_MESSAGE_FIELDS or f.name.startswith("_"):
            continue
        value = getattr(message, f.name, None)
        if value is not None:
            extras.append((f.name, _jsonable(value)))
    return extras


def _jsonable(value):
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def _message_to_dict(message):
    """Convert an SDK message object to the JSON shape the CLI emits."""
    if isinstance(message, dict):
        return message
    kind = _MESSAGE_TYPES.get(type(message).__name__)
    if kind == "system":
        data = dict(getattr(message, "data", None) or {})
        data.setdefault("type", "system")
        data.setdefault("subtype", getattr(message, "subtype", None))
        return data
    if kind in {"assistant", "user"}:
        content = message.content
        if isinstance(content, list):
            content = [_block_to_dict(block) for block in content]
        inner = {"role": kind, "content": content}
        model = getattr(message, "model", None)
        if model:
            inner["model"] = model
        payload = {
            "type": kind,
            "message": inner,
            "parent_tool_use_id": getattr(message, "parent_tool_use_id", None),
        }
        for name, value in _extra_fields(message):
            if name in _INNER_MESSAGE_FIELDS:
                inner[name] = value
            else:
                payload[name] = value
        return payload
    payload = dataclasses.asdict(message) if dataclasses.is_dataclass(message) else {"value": str(message)}
    payload["type"] = kind or "unknown"
    return payload


def _tool_text(text, is_error=False):
    result = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["is_error"] = True
    return result


def _make_ask_user_handler(ask_user):
    """Tool handler that blocks (off the event loop) until the caller answers."""

    async def ask_user_question(args):
        questions = args.get("questions") or []
        try:
            answers = await asyncio.to_thread(ask_user, questions)
        except QuestionCancelled as exc:
            return _tool_text(f"Question cancelled: {exc}", is_error=True)
        except QuestionTimeout as exc:
            return _tool_text(f"User did not respond: {exc}", is_error=True)
        return _tool_text(json.dumps(answers))

    return ask_user_question


def _build_ask_user_server(ask_user):
    from claude_agent_sdk import tool, create_sdk_mcp_server

    ask_tool = tool(ASK_USER_TOOL_NAME, ASK_USER_DESCRIPTION, ASK_USER_SCHEMA)(_make_ask_user_handler(ask_user))
    return create_sdk_mcp_server(name=ASK_USER_SERVER_NAME, version="1.0.0", tools=[ask_tool])


def _build_options(chat_request, ask_user):
    from claude_agent_sdk import ClaudeAgentOptions

    mcp_tool = f"mcp__{ASK_USER_SERVER_NAME}__{ASK_USER_TOOL_NAME}"
    allowed = list(chat_request.allowed_tools or DEFAULT_ALLOWED_TOOLS)
    if mcp_tool not in allowed:
        allowed.append(mcp_tool)
    disallowed = list(chat_request.disallowed_tools or [])
    # The built-in question tool needs a terminal; route questions through the MCP tool instead.
    if ASK_USER_TOOL_NAME not in disallowed:
        disallowed.append(ASK_USER_TOOL_NAME)

    def _log_stderr(line):
        logger.error(f"[Claude] CLI stderr: {line.rstrip()}")

    kwargs = dict(
        permission_mode=chat_request.permission_mode or DEFAULT_PERMISSION_MODE,
        allowed_tools=allowed,
        disallowed_tools=disallowed,
        mcp_servers={ASK_USER_SERVER_NAME: _build_ask_user_server(ask_user)},
        system_prompt={"type": "preset", "preset": "claude_code", "append": ASK_USER_SYSTEM_PROMPT},
        # An inherited CLAUDECODE makes the CLI refuse to start as a nested session.
        env={"CLAUDECODE": ""},
        stderr=_log_stderr,
    )
    if chat_request.session_id:
        kwargs["resume"] = chat_request.session_id
    if chat_request.working_directory:
        kwargs["cwd"] = chat_request.working_directory
    cli_path = _resolve_claude_path()
    if cli_path:
        kwargs["cli_path"] = cli_path
    return ClaudeAgentOptions(**kwargs)


class ClaudeInvocation(AgentInvocation):
    """Runs one SDK query on a private event loop thread.

    SDK messages are handed to the caller's thread through a queue, the same
    way CLI output lines are handed over by reader threads.
    """

    def __init__(self, chat_request, ask_user):
        self._request = chat_request
        self._ask_user = ask_user
        self._events = queue.Queue()
        self._lock = threading.Lock()
        self._loop = None
        self._task = None
        self._close_input = None
        self._aborted = False
        self._finished = False
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def __iter__(self):
        return _drain_queue(self._events)

    def end_input(self):
        self._call_in_loop(lambda: self._close_input.set())

    def abort(self):
        with self._lock:
            self._aborted = True
        self._call_in_loop(lambda: self._task.cancel())

    def _call_in_loop(self, fn):
        with self._lock:
            loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(fn)
        except RuntimeError:
            # Loop shut down between the check and the call.
            pass

    def _run(self):
        try:
            asyncio.run(self._main())
        except Exception as exc:
            self._finish(exc)
        finally:
            self._finish()

    def _finish(self, exc=None):
        """Queue the terminal items once: an optional error, then the end marker."""
        with self._lock:
            if self._finished:
                return
            self._finished = True
        if exc is not None:
            logger.error(f"[Claude] Query failed for request {self._request.request_id}: {exc}", exc_info=exc)
            self._events.put(("error", AgentError(str(exc) or exc.__class__.__name__)))
        self._events.put(("end", None))

    async def _main(self):
        from claude_agent_sdk import query

        with self._lock:
            if self._aborted:
                return
            self._loop = asyncio.get_running_loop()
            self._task = asyncio.current_task()
            self._close_input = asyncio.Event()
        options = _build_options(self._request, self._ask_user)
        logger.info(
            f"[Claude] Starting query request={self._request.request_id} "
            f"resume={self._request.session_id} cwd={self._request.working_directory}"
        )
        try:
            async for message in query(prompt=self._prompt_stream(), options=options):
                self._events.put(("event", _message_to_dict(message)))
        except asyncio.CancelledError:
            logger.info(f"[Claude] Query aborted for request {self._request.request_id}")
        except Exception as exc:
            # Must be queued before asyncio.run joins its executor, where a question
            # tool call can still be blocked waiting for an answer.
            self._finish(exc)
        finally:
            self._finish()

    async def _prompt_stream(self):
        yield {
            "type": "user",
            "message": {"role": "user", "content": self._request.message},
            "parent_tool_use_id": None,
            "session_id": self._request.session_id or "default",
        }
        # Keep stdin open for the MCP control channel until the result arrives or we abort.
        await self._close_input.wait()


class ClaudeAgent(Agent):
    def start(self, chat_request, ask_user):
        return ClaudeInvocation(chat_request, ask_user)
