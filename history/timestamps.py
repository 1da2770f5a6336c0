"""Timestamp reconciliation for messages persisted more than once."""
import datetime

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


def _assistant_message_id(record):
    """Stable message id of an assistant record, or None."""
    if not isinstance(record, dict):
        return None
    message = record.get("message")
    if not isinstance(message, dict):
        return None
    if record.get("type") != "assistant" and message.get("role") != "assistant":
        return None
    message_id = message.get("id")
    if not isinstance(message_id, str) or not message_id:
        return None
    return message_id


def _parse_timestamp(value):
    """Parse an ISO-8601 timestamp to an aware datetime, or None."""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _timestamp_key(record):
    parsed = _parse_timestamp(record.get("timestamp")) if isinstance(record, dict) else None
    return parsed or _EPOCH


def _restore_timestamps(records):
    """Rewrite every occurrence of a repeated assistant message to its earliest timestamp.

    Records without a stable message id are returned unchanged. The input
    records are not mutated.
    """
    earliest = {}
    for record in records:
        message_id = _assistant_message_id(record)
        if not message_id:
            continue
        parsed = _parse_timestamp(record.get("timestamp"))
        if parsed is None:
            continue
        current = earliest.get(message_id)
        if current is None or parsed < current[0]:
            earliest[message_id] = (parsed, record.get("timestamp"))

    restored = []
    for record in records:
        message_id = _assistant_message_id(record)
        if message_id in earliest:
            first_seen = earliest[message_id][1]
            if record.get("timestamp") != first_seen:
                record = dict(record, timestamp=first_seen)
        restored.append(record)
    return restored


def _sort_messages_by_timestamp(records):
    # sorted() is stable, so ties keep their log order.
    return sorted(records, key=_timestamp_key)


def _calculate_conversation_metadata(records):
    if not records:
        now = datetime.datetime.now(datetime.timezone.utc).isoformat()
        return {"startTime": now, "endTime": now, "messageCount": 0}
    ordered = _sort_messages_by_timestamp(records)
    return {
        "startTime": ordered[0].get("timestamp"),
        "endTime": ordered[-1].get("timestamp"),
        "messageCount": len(records),
    }


def _process_conversation_messages(records):
    restored = _restore_timestamps(records)
    ordered = _sort_messages_by_timestamp(restored)
    return {
        "messages": ordered,
        "metadata": _calculate_conversation_metadata(ordered),
    }
