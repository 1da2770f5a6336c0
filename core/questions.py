"""Pending questions the agent has asked and the caller has not answered yet."""
import itertools
import threading

from utils.config import logger


class QuestionCancelled(Exception):
    """The owning request finished before the question was answered."""


class QuestionTimeout(Exception):
    """No answer arrived within the configured question timeout."""


class _PendingQuestion:
    def __init__(self, question_id, questions, owner=None):
        self.question_id = question_id
        self.questions = questions
        self.owner = owner
        self.answer = None
        self.answered = False
        self.cancelled = False
        self.ready = threading.Event()


class QuestionBroker:
    """Per-request answer slots shared by the streaming thread and the answer endpoint.

    Slots may carry an owner token (the run's cancel handle); ``clear`` with an
    owner only touches that run's slots, since a cancelled id can be reused.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending = {}  # {request_id: {question_id: _PendingQuestion}}
        self._counter = itertools.count(1)

    def ask(self, request_id, questions, owner=None):
        with self._lock:
            question_id = f"q_{next(self._counter)}"
            slots = self._pending.setdefault(request_id, {})
            slots[question_id] = _PendingQuestion(question_id, questions, owner)
        logger.debug(f"[Questions] Asked {question_id} for request {request_id}")
        return question_id

    def await_answer(self, request_id, question_id, timeout=None):
        with self._lock:
            slot = self._pending.get(request_id, {}).get(question_id)
        if slot is None:
            raise QuestionCancelled(f"question {question_id} is no longer pending")
        if not slot.ready.wait(timeout):
            self._discard(request_id, question_id)
            raise QuestionTimeout(f"question {question_id} was not answered within {timeout}s")
        if slot.cancelled:
            raise QuestionCancelled(f"request {request_id} ended before {question_id} was answered")
        self._discard(request_id, question_id)
        logger.debug(f"[Questions] Answer consumed for {question_id}")
        return slot.answer

    def resolve(self, request_id, question_id, answer):
        with self._lock:
            slot = self._pending.get(request_id, {}).get(question_id)
            if slot is None or slot.answered or slot.cancelled:
                return False
            slot.answer = answer
            slot.answered = True
        slot.ready.set()
        return True

    def clear(self, request_id, owner=None):
        """Cancel the request's pending slots, only those asked by ``owner`` when given."""
        with self._lock:
            slots = self._pending.get(request_id, {})
            removed = [slot for slot in slots.values() if owner is None or slot.owner is owner]
            for slot in removed:
                del slots[slot.question_id]
                slot.cancelled = not slot.answered
            if not slots:
                self._pending.pop(request_id, None)
        for slot in removed:
            slot.ready.set()
        if removed:
            logger.debug(f"[Questions] Cleared {len(removed)} pending question(s) for {request_id}")

    def pending(self, request_id):
        with self._lock:
            return [
                qid for qid, slot in self._pending.get(request_id, {}).items()
                if not slot.answered
            ]

    def _discard(self, request_id, question_id):
        with self._lock:
            slots = self._pending.get(request_id)
            if slots is None:
                return
            slots.pop(question_id, None)
            if not slots:
                self._pending.pop(request_id, None)
