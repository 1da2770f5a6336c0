"""Shared test fixtures for pytest."""
import sys
import os
import json
import queue
import threading
import pytest
import tempfile
import shutil

# Add parent directory to path so we can import from project
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from providers.base import Agent, AgentInvocation


class ScriptedInvocation(AgentInvocation):
    """Agent invocation driven by a script of steps.

    Each step is either an event dict to yield, ``("ask", questions)`` to call
    ask_user and yield its answer as an event, ``("raise", exc)`` to fail, or
    ``("wait",)`` to block until aborted.
    """

    def __init__(self, steps, ask_user):
        self.steps = list(steps)
        self.ask_user = ask_user
        self.aborted = threading.Event()
        self.input_closed = threading.Event()
        self.answers = []
        self.ask_errors = []

    def __iter__(self):
        for step in self.steps:
            if self.aborted.is_set():
                return
            if isinstance(step, dict):
                yield step
                if step.get("type") == "result":
                    # Mirror the real CLI: nothing further until stdin closes.
                    self.input_closed.wait(5)
                continue
            kind = step[0]
            if kind == "ask":
                try:
                    answer = self.ask_user(step[1])
                except Exception as exc:
                    self.ask_errors.append(exc)
                    return
                self.answers.append(answer)
                yield {"type": "user", "message": {"role": "user", "content": [{"type": "tool_result", "content": json.dumps(answer)}]}}
            elif kind == "raise":
                raise step[1]
            elif kind == "wait":
                self.aborted.wait(5)
                return

    def end_input(self):
        self.input_closed.set()

    def abort(self):
        self.aborted.set()


class ScriptedAgent(Agent):
    def __init__(self, steps):
        self.steps = steps
        self.invocations = queue.Queue()
        self.requests = []

    def start(self, chat_request, ask_user):
        self.requests.append(chat_request)
        invocation = ScriptedInvocation(self.steps, ask_user)
        self.invocations.put(invocation)
        return invocation


def assistant_record(message_id, timestamp, text="hello", session_id="s1"):
    return {
        "type": "assistant",
        "timestamp": timestamp,
        "sessionId": session_id,
        "message": {"id": message_id, "role": "assistant", "content": [{"type": "text", "text": text}]},
    }


def user_record(timestamp, text="hi", session_id="s1"):
    return {
        "type": "user",
        "timestamp": timestamp,
        "sessionId": session_id,
        "message": {"role": "user", "content": text},
    }


def write_jsonl(path, records, extra_lines=()):
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")
        for line in extra_lines:
            f.write(line + "\n")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    tmpdir = tempfile.mkdtemp()
    yield tmpdir
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def projects_dir(temp_dir):
    """Agent projects directory with one project holding two overlapping logs."""
    root = os.path.join(temp_dir, "projects")
    project = os.path.join(root, "-home-user-demo")
    os.makedirs(project)
    write_jsonl(os.path.join(project, "sess-a.jsonl"), [
        user_record("2026-01-01T10:00:00.000Z", session_id="sess-a"),
        assistant_record("m1", "2026-01-01T10:00:05.000Z", "first answer", session_id="sess-a"),
    ])
    write_jsonl(os.path.join(project, "sess-b.jsonl"), [
        user_record("2026-01-01T10:00:00.000Z", session_id="sess-b"),
        assistant_record("m1", "2026-01-01T10:00:09.000Z", "first answer", session_id="sess-b"),
        user_record("2026-01-01T10:01:00.000Z", "more", session_id="sess-b"),
        assistant_record("m2", "2026-01-01T10:01:05.000Z", "second answer", session_id="sess-b"),
        assistant_record("m1", "2026-01-01T10:00:02.000Z", "first answer", session_id="sess-b"),
    ])
    return root


@pytest.fixture
def scripted_agent():
    """Agent that emits an init event, one assistant message and a result."""
    return ScriptedAgent([
        {"type": "system", "subtype": "init", "session_id": "sess-new"},
        {"type": "assistant", "message": {"role": "assistant", "content": [{"type": "text", "text": "Hi"}]}},
        {"type": "result", "subtype": "success", "is_error": False, "session_id": "sess-new"},
    ])


@pytest.fixture
def app(scripted_agent, projects_dir, temp_dir):
    """Create Flask app for testing."""
    from app import create_app
    config_path = os.path.join(temp_dir, "claude.json")
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump({"projects": {"/home/user/demo": {}, "/home/user/gone": {}}}, f)
    application = create_app(
        agent=scripted_agent,
        projects_dir=projects_dir,
        config_path=config_path,
        heartbeat_interval=0.05,
    )
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
