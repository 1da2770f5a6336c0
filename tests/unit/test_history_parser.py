"""Unit tests for session log parsing."""
import os
import pytest
from conftest import assistant_record, user_record, write_jsonl
from history.parser import (
    _parse_history_file,
    _parse_all_history_files,
    _read_history_file,
    _get_history_files,
    NO_PREVIEW,
)
from utils.errors import NotFoundError, ValidationError


class TestParseHistoryFile:
    """Tests for _parse_history_file."""

    def test_derives_ids_times_and_preview(self, temp_dir):
        path = os.path.join(temp_dir, "abc.jsonl")
        write_jsonl(path, [
            user_record("2026-01-01T10:00:00.000Z"),
            assistant_record("m1", "2026-01-01T10:00:05.000Z", "first"),
            {"type": "summary", "summary": "control record"},
            assistant_record("m2", "2026-01-01T10:00:07.000Z", "second"),
        ])
        log = _parse_history_file(path)

        assert log["sessionId"] == "abc"
        assert log["messageIds"] == {"m1", "m2"}
        assert log["startTime"] == "2026-01-01T10:00:00.000Z"
        assert log["lastTime"] == "2026-01-01T10:00:07.000Z"
        assert log["messageCount"] == 4
        assert log["lastMessagePreview"] == "second"

    def test_malformed_lines_are_skipped(self, temp_dir):
        path = os.path.join(temp_dir, "abc.jsonl")
        write_jsonl(path, [assistant_record("m1", "2026-01-01T10:00:05.000Z")], extra_lines=["{not json", ""])
        log = _parse_history_file(path)

        assert log["messageCount"] == 1
        assert log["messageIds"] == {"m1"}

    def test_file_without_valid_lines_yields_nothing(self, temp_dir):
        path = os.path.join(temp_dir, "empty.jsonl")
        write_jsonl(path, [], extra_lines=["garbage", "{"])
        assert _parse_history_file(path) is None

    def test_preview_truncated(self, temp_dir):
        path = os.path.join(temp_dir, "long.jsonl")
        write_jsonl(path, [assistant_record("m1", "2026-01-01T10:00:05.000Z", "x" * 250)])
        assert _parse_history_file(path)["lastMessagePreview"] == "x" * 100
        assert _parse_history_file(path, preview_length=10)["lastMessagePreview"] == "x" * 10

    def test_string_content_preview(self, temp_dir):
        path = os.path.join(temp_dir, "s.jsonl")
        record = {"type": "assistant", "timestamp": "2026-01-01T10:00:00Z",
                  "message": {"role": "assistant", "content": "plain text"}}
        write_jsonl(path, [record])
        assert _parse_history_file(path)["lastMessagePreview"] == "plain text"

    def test_missing_preview_placeholder(self, temp_dir):
        path = os.path.join(temp_dir, "u.jsonl")
        write_jsonl(path, [user_record("2026-01-01T10:00:00Z")])
        log = _parse_history_file(path)
        assert log["lastMessagePreview"] == NO_PREVIEW
        assert log["messageIds"] == set()


class TestParseAll:
    """Tests for directory-level reading."""

    def test_only_session_logs_are_read(self, temp_dir):
        write_jsonl(os.path.join(temp_dir, "a.jsonl"), [assistant_record("m1", "2026-01-01T10:00:00Z")])
        write_jsonl(os.path.join(temp_dir, "bad.jsonl"), [], extra_lines=["nope"])
        with open(os.path.join(temp_dir, "notes.txt"), "w") as f:
            f.write("ignored")
        os.makedirs(os.path.join(temp_dir, "dir.jsonl"))

        logs = _parse_all_history_files(temp_dir)
        assert [log["sessionId"] for log in logs] == ["a"]

    def test_missing_directory_is_empty(self, temp_dir):
        assert _get_history_files(os.path.join(temp_dir, "nope")) == []


class TestReadHistoryFile:
    """Tests for reading a single named log."""

    def test_reads_named_log(self, temp_dir):
        write_jsonl(os.path.join(temp_dir, "one.jsonl"), [assistant_record("m1", "2026-01-01T10:00:00Z")])
        assert _read_history_file(temp_dir, "one")["messageIds"] == {"m1"}

    def test_missing_log_is_not_found(self, temp_dir):
        with pytest.raises(NotFoundError):
            _read_history_file(temp_dir, "nope")

    def test_unsafe_id_rejected_before_touching_disk(self, temp_dir):
        with pytest.raises(ValidationError):
            _read_history_file(temp_dir, "../one")


class TestUnexpectedShapes:
    """Valid JSON that is not a usable session record."""

    def test_non_object_lines_are_skipped(self, temp_dir):
        path = os.path.join(temp_dir, "odd.jsonl")
        write_jsonl(path, [assistant_record("m1", "2026-01-01T10:00:05.000Z")],
                    extra_lines=["42", '"x"', "null", "[]"])
        log = _parse_history_file(path)
        assert log["messageCount"] == 1
        assert all(isinstance(record, dict) for record in log["messages"])

    def test_non_string_message_id_is_ignored(self, temp_dir):
        path = os.path.join(temp_dir, "ids.jsonl")
        odd = assistant_record("m1", "2026-01-01T10:00:05.000Z")
        odd["message"]["id"] = {"nested": 1}
        write_jsonl(path, [odd, assistant_record("m2", "2026-01-01T10:00:06.000Z")])
        assert _parse_history_file(path)["messageIds"] == {"m2"}

    def test_one_failing_file_does_not_hide_siblings(self, temp_dir, monkeypatch):
        import history.parser as parser
        write_jsonl(os.path.join(temp_dir, "a.jsonl"), [assistant_record("m1", "2026-01-01T10:00:00Z")])
        write_jsonl(os.path.join(temp_dir, "b.jsonl"), [assistant_record("m2", "2026-01-01T10:00:00Z")])
        real_parse = parser._parse_history_file

        def flaky(file_path, preview_length=100):
            if file_path.endswith("a.jsonl"):
                raise TypeError("unexpected record shape")
            return real_parse(file_path, preview_length)

        monkeypatch.setattr(parser, "_parse_history_file", flaky)
        assert [log["sessionId"] for log in parser._parse_all_history_files(temp_dir)] == ["b"]


class TestTimeRange:
    def test_times_compared_as_instants(self, temp_dir):
        path = os.path.join(temp_dir, "tz.jsonl")
        write_jsonl(path, [
            # 09:30 UTC, earlier than 10:00Z even though it sorts later as text.
            user_record("2026-01-01T11:30:00+02:00"),
            assistant_record("m1", "2026-01-01T10:00:00Z"),
        ])
        log = _parse_history_file(path)
        assert log["startTime"] == "2026-01-01T11:30:00+02:00"
        assert log["lastTime"] == "2026-01-01T10:00:00Z"

    def test_unparseable_timestamps_ignored(self, temp_dir):
        path = os.path.join(temp_dir, "bad-ts.jsonl")
        write_jsonl(path, [user_record("yesterday"), assistant_record("m1", "2026-01-01T10:00:00Z")])
        log = _parse_history_file(path)
        assert log["startTime"] == log["lastTime"] == "2026-01-01T10:00:00Z"
