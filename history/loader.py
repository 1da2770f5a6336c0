"""Resolving project history directories and loading reconstructed conversations."""
import os

from utils.config import logger, PREVIEW_LENGTH
from utils.errors import NotFoundError, ValidationError, ERR_PROJECT_NOT_FOUND, ERR_SESSION_NOT_FOUND
from utils.validation import _validate_encoded_project_name
from history.parser import _parse_all_history_files, _read_history_file
from history.grouping import _group_conversations
from history.timestamps import _process_conversation_messages


def _get_history_dir(projects_dir, encoded_project_name):
    """Return the history directory for a project, validating the name first."""
    err = _validate_encoded_project_name(encoded_project_name)
    if err:
        raise ValidationError(err, details={"encodedProjectName": encoded_project_name})
    if not projects_dir:
        raise NotFoundError("Home directory not found", code=ERR_PROJECT_NOT_FOUND)
    history_dir = os.path.join(projects_dir, encoded_project_name)
    if not os.path.isdir(history_dir):
        raise NotFoundError("Project not found", code=ERR_PROJECT_NOT_FOUND)
    return history_dir


def _list_conversations(projects_dir, encoded_project_name, preview_length=PREVIEW_LENGTH):
    history_dir = _get_history_dir(projects_dir, encoded_project_name)
    logger.debug(f"[History] History directory: {history_dir}")
    conversation_files = _parse_all_history_files(history_dir, preview_length)
    logger.debug(f"[History] Found {len(conversation_files)} conversation files")
    conversations = _group_conversations(conversation_files)
    logger.debug(f"[History] After grouping: {len(conversations)} unique conversations")
    return conversations


def _load_conversation(projects_dir, encoded_project_name, session_id):
    """Load one conversation with reconciled timestamps and computed metadata."""
    history_dir = _get_history_dir(projects_dir, encoded_project_name)
    try:
        conversation = _read_history_file(history_dir, session_id)
    except NotFoundError as exc:
        raise NotFoundError(exc.message, code=ERR_SESSION_NOT_FOUND, details=exc.details)
    processed = _process_conversation_messages(conversation["messages"])
    logger.debug(f"[History] Loaded conversation {session_id} with {len(processed['messages'])} messages")
    return {
        "sessionId": session_id,
        "messages": processed["messages"],
        "metadata": processed["metadata"],
    }
