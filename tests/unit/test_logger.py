"""Tests for RunnerLogger JSONL event logs."""

import logging

import pytest

from issue_runner.logger import RunnerLogger, clear_logger_cache, get_logger


class TestRunnerLogger:

    def test_entries_are_jsonl(self, tmp_path):
        log = RunnerLogger("ENG-1", logs_dir=tmp_path)
        log.info("folder_created", {"path": "/tmp/x"})
        log.warn("status_unverified")

        entries = log.read_logs()
        assert [e["event_type"] for e in entries] == ["folder_created", "status_unverified"]
        assert entries[0]["issue_id"] == "ENG-1"
        assert entries[0]["data"] == {"path": "/tmp/x"}
        assert entries[1]["level"] == "warn"
        assert list(tmp_path.glob("ENG-1-*.jsonl"))

    def test_operation_context_tags_entries(self, tmp_path):
        log = RunnerLogger("ENG-1", logs_dir=tmp_path)
        with log.operation_context("Review"):
            log.info("inside")
        log.info("outside")

        entries = log.read_logs()
        assert [e["event_type"] for e in entries] == [
            "operation_start", "inside", "operation_end", "outside",
        ]
        assert entries[1]["operation"] == "Review"
        assert "operation" not in entries[3]

    def test_read_filters(self, tmp_path):
        log = RunnerLogger("ENG-1", logs_dir=tmp_path)
        log.info("a")
        log.error("b")
        log.error("c")
        assert [e["event_type"] for e in log.read_logs(level="error")] == ["b", "c"]
        assert [e["event_type"] for e in log.read_logs(event_type="a")] == ["a"]
        assert len(log.read_logs(limit=1)) == 1

    def test_unparseable_lines_are_skipped(self, tmp_path):
        log = RunnerLogger("ENG-1", logs_dir=tmp_path)
        log.info("a")
        with open(log._get_log_path(), "a") as f:
            f.write("not json\n\n")
        assert len(log.read_logs()) == 1

    def test_operation_end_records_failure(self, tmp_path):
        log = RunnerLogger("ENG-1", logs_dir=tmp_path)
        with pytest.raises(RuntimeError):
            with log.operation_context("Review", working_folder=tmp_path / "op-Review-1"):
                raise RuntimeError("agent vanished")

        end = log.read_logs(event_type="operation_end")[0]
        assert end["level"] == "error"
        assert end["data"]["error"] == "RuntimeError: agent vanished"
        assert end["data"]["duration_seconds"] >= 0
        assert end["working_folder"].endswith("op-Review-1")

    def test_read_filters_by_operation(self, tmp_path):
        log = RunnerLogger("ENG-1", logs_dir=tmp_path)
        with log.operation_context("Review"):
            log.info("a")
        with log.operation_context("Plan"):
            log.info("b")
        assert [e["event_type"] for e in log.read_logs(operation="Plan")] == [
            "operation_start", "b", "operation_end",
        ]

    def test_unknown_level_is_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown log level"):
            RunnerLogger("ENG-1", logs_dir=tmp_path).log("a", level="debug")

    def test_entries_reach_standard_logging(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="issue_runner.logger"):
            RunnerLogger("ENG-1", logs_dir=tmp_path).warn("status_unverified")
        assert "ENG-1 status_unverified" in caplog.text

    def test_unsafe_identifier_stays_in_logs_dir(self, tmp_path):
        log = RunnerLogger("../ENG/1", logs_dir=tmp_path)
        log.info("a")
        assert log._get_log_path().parent == tmp_path

    def test_logs_dir_from_config(self, runner_config):
        log = RunnerLogger("ENG-1", config=runner_config)
        log.info("a")
        assert log.logs_dir == runner_config.logs_path
        assert list(runner_config.logs_path.glob("*.jsonl"))


def test_get_logger_caches(runner_config):
    first = get_logger("ENG-1", runner_config)
    assert get_logger("ENG-1") is first
    clear_logger_cache()
    assert get_logger("ENG-1", runner_config) is not first
