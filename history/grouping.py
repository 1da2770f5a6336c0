"""Collapse resumed/forked session logs into one summary per logical conversation."""
from history.timestamps import _timestamp_key


def _is_subset(subset, superset):
    if len(subset) > len(superset):
        return False
    return all(item in superset for item in subset)


def _create_conversation_summary(conversation):
    return {
        "sessionId": conversation["sessionId"],
        "startTime": conversation["startTime"],
        "lastTime": conversation["lastTime"],
        "messageCount": conversation["messageCount"],
        "lastMessagePreview": conversation["lastMessagePreview"],
    }


def _group_conversations(conversations):
    """Drop every log whose assistant message ids are covered by another kept log.

    Larger logs are visited first so a resumed conversation (a superset of
    the log it resumed) is kept and its ancestors are dropped. Logs with equal
    sizes keep their input order. Quadratic in the number of logs per
    project, which stays small.
    """
    if not conversations:
        return []
    ordered = sorted(conversations, key=lambda conv: len(conv["messageIds"]), reverse=True)
    unique = []
    for current in ordered:
        if not any(_is_subset(current["messageIds"], kept["messageIds"]) for kept in unique):
            unique.append(current)

    summaries = [_create_conversation_summary(conv) for conv in unique]
    summaries.sort(key=lambda summary: _timestamp_key({"timestamp": summary["startTime"]}), reverse=True)
    return summaries
