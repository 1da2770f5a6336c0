"""Provider shared helpers and the agent capability the bridge drives."""


class AgentInvocation:
    """One running agent exchange.

    Iterating yields the agent's events (JSON-serializable dicts) in arrival
    order until the agent finishes. Iteration raises when the agent fails.
    """

    def __iter__(self):
        raise NotImplementedError

    def end_input(self):
        """Close the agent's input channel so its process can exit cleanly."""
        raise NotImplementedError

    def abort(self):
        """Stop the invocation promptly. Safe to call more than once."""
        raise NotImplementedError


class Agent:
    """Starts invocations of an external command-executing agent."""

    def start(self, chat_request, ask_user):
        """Begin an invocation for ``chat_request``.

        ``ask_user(questions)`` blocks until the caller answers and returns the
        answer payload, or raises ``core.questions.QuestionCancelled``.
        """
        raise NotImplementedError


def _drain_queue(q):
    """Yield queued events until the end marker, re-raising producer errors."""
    while True:
        label, item = q.get()
        if label == "end":
            return
        if label == "error":
            raise item
        yield item
