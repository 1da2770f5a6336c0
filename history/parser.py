"""Reading persisted agent session logs (one JSON record per line)."""
import json
import os
import pathlib

from utils.config import logger, PREVIEW_LENGTH
from utils.errors import NotFoundError, ValidationError
from utils.validation import _validate_session_id
from history.timestamps import _assistant_message_id, _parse_timestamp

HISTORY_FILE_SUFFIX = ".jsonl"
NO_PREVIEW = "No preview available"


def _read_text_file(path):
    """Read a file, classifying a missing file as NotFoundError."""
    try:
        return pathlib.Path(path).read_text(encoding="utf-8")
    except (FileNotFoundError, NotADirectoryError):
        raise NotFoundError(f"file not found: {path}")


def _parse_jsonl(text, source):
    """Parse NDJSON text, skipping (and logging) malformed lines and non-object values."""
    records = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error(f"[History] Failed to parse line {lineno} in {source}: {e}")
            continue
        if not isinstance(record, dict):
            logger.error(f"[History] Skipping non-object line {lineno} in {source}")
            continue
        records.append(record)
    return records


def _extract_preview(content, limit=PREVIEW_LENGTH):
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and "text" in item:
                return str(item["text"])[:limit]
        return None
    if isinstance(content, str):
        return content[:limit]
    return None


def _summarize_records(records, limit=PREVIEW_LENGTH):
    message_ids = set()
    start_time, start_key = "", None
    last_time, last_key = "", None
    preview = ""
    for record in records:
        if not isinstance(record, dict):
            continue
        message_id = _assistant_message_id(record)
        if message_id:
            message_ids.add(message_id)
        timestamp = record.get("timestamp")
        parsed = _parse_timestamp(timestamp)
        if parsed is not None:
            if start_key is None or parsed < start_key:
                start_time, start_key = timestamp, parsed
            if last_key is None or parsed > last_key:
                last_time, last_key = timestamp, parsed
        message = record.get("message")
        if isinstance(message, dict) and message.get("role") == "assistant" and message.get("content"):
            text = _extract_preview(message["content"], limit)
            if text is not None:
                preview = text
    return message_ids, start_time, last_time, preview


def _parse_history_file(file_path, preview_length=PREVIEW_LENGTH):
    """Parse one session log into a conversation log dict, or None when it has no valid records."""
    try:
        text = _read_text_file(file_path)
    except NotFoundError:
        logger.error(f"[History] History file disappeared: {file_path}")
        return None
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"[History] Failed to read history file {file_path}: {e}")
        return None

    records = _parse_jsonl(text, file_path)
    if not records:
        return None

    message_ids, start_time, last_time, preview = _summarize_records(records, preview_length)
    session_id = os.path.basename(file_path)
    if session_id.endswith(HISTORY_FILE_SUFFIX):
        session_id = session_id[: -len(HISTORY_FILE_SUFFIX)]
    return {
        "sessionId": session_id,
        "filePath": str(file_path),
        "messages": records,
        "messageIds": message_ids,
        "startTime": start_time,
        "lastTime": last_time,
        "messageCount": len(records),
        "lastMessagePreview": preview or NO_PREVIEW,
    }


def _get_history_files(history_dir):
    try:
        entries = sorted(pathlib.Path(history_dir).iterdir())
    except OSError:
        return []
    return [str(p) for p in entries if p.is_file() and p.name.endswith(HISTORY_FILE_SUFFIX)]


def _parse_all_history_files(history_dir, preview_length=PREVIEW_LENGTH):
    results = []
    for file_path in _get_history_files(history_dir):
        try:
            parsed = _parse_history_file(file_path, preview_length)
        except Exception as e:
            logger.error(f"[History] Skipping unreadable history file {file_path}: {e}", exc_info=True)
            continue
        if parsed:
            results.append(parsed)
    return results


def _read_history_file(history_dir, session_id, preview_length=PREVIEW_LENGTH):
    """Read a single named session log.

    Raises:
        ValidationError: session_id fails the identifier safety check
        NotFoundError: the log is absent or holds no valid records
    """
    err = _validate_session_id(session_id)
    if err:
        raise ValidationError(err, details={"sessionId": session_id})
    file_path = os.path.join(history_dir, f"{session_id}{HISTORY_FILE_SUFFIX}")
    if not os.path.isfile(file_path):
        raise NotFoundError("Conversation not found", details={"sessionId": session_id})
    parsed = _parse_history_file(file_path, preview_length)
    if parsed is None:
        raise NotFoundError("Conversation has no readable messages", details={"sessionId": session_id})
    return parsed
