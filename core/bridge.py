"""Drives one agent invocation and turns it into an NDJSON record stream."""
import queue
import threading
import time

from utils.config import logger, HEARTBEAT_INTERVAL_SEC, QUESTION_TIMEOUT_SEC
from utils.errors import ConflictError
from core.questions import QuestionCancelled

STATE_STARTING = "starting"
STATE_STREAMING = "streaming"
STATE_CLOSING = "closing"
STATE_DONE = "done"

ABORTED_MESSAGE = "Request aborted"

_END = object()


class ChatRequest:
    def __init__(
        self,
        request_id,
        message,
        session_id=None,
        working_directory=None,
        permission_mode=None,
        allowed_tools=None,
        disallowed_tools=None,
    ):
        self.request_id = request_id
        self.message = message
        self.session_id = session_id
        self.working_directory = working_directory
        self.permission_mode = permission_mode
        self.allowed_tools = allowed_tools
        self.disallowed_tools = disallowed_tools


def _data_record(event):
    return {"type": "claude_json", "data": event}


def _question_record(request_id, question_id, questions):
    return {
        "type": "ask_user_question",
        "questionId": question_id,
        "requestId": request_id,
        "questions": questions,
    }


def _heartbeat_record():
    return {"type": "heartbeat", "ts": int(time.time() * 1000)}


def _error_record(message):
    return {"type": "error", "error": message}


def _done_record():
    return {"type": "done"}


def _is_result_event(event):
    return isinstance(event, dict) and event.get("type") == "result"


class _StreamSession:
    def __init__(self, chat_request, handle):
        self.request = chat_request
        self.handle = handle
        self.state = STATE_STARTING
        self.invocation = None
        self.records = queue.Queue()
        self.lock = threading.Lock()
        self.closed = False
        self.done = threading.Event()

    @property
    def request_id(self):
        return self.request.request_id

    def emit(self, record):
        with self.lock:
            if self.closed:
                return False
            self.records.put(record)
            return True

    def close(self, final_record=None):
        with self.lock:
            if self.closed:
                return False
            self.closed = True
            if final_record is not None:
                self.records.put(final_record)
            self.records.put(_END)
            return True


class SessionStreamBridge:
    """Multiplexes agent events, injected questions and heartbeats into one ordered stream.

    The registry and broker are owned by the caller and shared with the abort
    and answer endpoints.
    """

    def __init__(
        self,
        agent,
        registry,
        broker,
        heartbeat_interval=HEARTBEAT_INTERVAL_SEC,
        question_timeout=QUESTION_TIMEOUT_SEC,
    ):
        self.agent = agent
        self.registry = registry
        self.broker = broker
        self.heartbeat_interval = heartbeat_interval
        self.question_timeout = question_timeout

    def stream(self, chat_request):
        """Yield stream records for ``chat_request`` until ``done`` or a terminal ``error``."""
        try:
            handle = self.registry.register(chat_request.request_id)
        except ConflictError as exc:
            logger.warning(f"[Chat] {exc.message}")
            yield _error_record(exc.message)
            return

        session = _StreamSession(chat_request, handle)
        handle.add_callback(lambda: self._on_cancel(session))
        threading.Thread(target=self._run, args=(session,), daemon=True).start()

        reached_end = False
        try:
            while True:
                try:
                    record = session.records.get(timeout=self.heartbeat_interval)
                except queue.Empty:
                    # Keep the connection open during long tool runs or pending questions.
                    yield _heartbeat_record()
                    continue
                if record is _END:
                    reached_end = True
                    break
                yield record
        finally:
            if not reached_end and not session.done.is_set():
                # Consumer went away (client disconnect) before the agent finished.
                logger.info(f"[Chat] Stream for {chat_request.request_id} closed early, cancelling")
                handle.cancel()
                self.registry.unregister(chat_request.request_id, handle)

    def _run(self, session):
        request_id = session.request_id
        completed = False
        try:
            session.state = STATE_STREAMING
            invocation = self.agent.start(session.request, lambda questions: self._ask_user(session, questions))
            session.invocation = invocation
            if session.handle.cancelled:
                invocation.abort()
            for event in invocation:
                if session.handle.cancelled:
                    break
                logger.debug(f"[Chat] Agent event for {request_id}: {event}")
                session.emit(_data_record(event))
                if _is_result_event(event) and session.state == STATE_STREAMING:
                    session.state = STATE_CLOSING
                    invocation.end_input()
            else:
                completed = not session.handle.cancelled
            if completed:
                session.close(_done_record())
        except Exception as exc:
            if not session.handle.cancelled:
                logger.error(f"[Chat] Agent execution failed for {request_id}: {exc}", exc_info=True)
                session.close(_error_record(str(exc) or exc.__class__.__name__))
        finally:
            session.state = STATE_DONE
            if not completed and session.invocation is not None:
                try:
                    session.invocation.abort()
                except Exception as e:
                    logger.warning(f"[Chat] Abort during cleanup failed for {request_id}: {e}")
            self.registry.unregister(request_id, session.handle)
            self.broker.clear(request_id, owner=session.handle)
            session.close()
            session.done.set()
            logger.debug(f"[Chat] Request {request_id} finished")

    def _on_cancel(self, session):
        logger.info(f"[Chat] Cancelling request {session.request_id} in state {session.state}")
        session.close(_error_record(ABORTED_MESSAGE))
        invocation = session.invocation
        if invocation is not None:
            try:
                invocation.abort()
            except Exception as e:
                logger.warning(f"[Chat] Abort failed for {session.request_id}: {e}")
        self.broker.clear(session.request_id, owner=session.handle)

    def _ask_user(self, session, questions):
        request_id = session.request_id
        question_id = self.broker.ask(request_id, questions, owner=session.handle)
        if session.handle.cancelled or not session.emit(_question_record(request_id, question_id, questions)):
            self.broker.clear(request_id, owner=session.handle)
            raise QuestionCancelled(f"request {request_id} is no longer active")
        logger.info(f"[Chat] Waiting for answer to {question_id} on {request_id}")
        return self.broker.await_answer(request_id, question_id, timeout=self.question_timeout)
