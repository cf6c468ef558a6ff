"""Tests for the Linear tracker client."""

from unittest.mock import Mock

import pytest
import requests

from issue_runner.config import TrackerConfig
from issue_runner.tracker import LinearTracker, TrackerError, team_key_for


def _response(data=None, status=200, errors=None):
    resp = Mock()
    resp.status_code = status
    resp.text = "body"
    payload = {"data": data}
    if errors:
        payload["errors"] = errors
    resp.json.return_value = payload
    return resp


@pytest.fixture
def config(monkeypatch):
    monkeypatch.setenv("ISSUE_RUNNER_TEST_KEY", "lin_api_test")
    return TrackerConfig(api_key_env_var="ISSUE_RUNNER_TEST_KEY")


@pytest.fixture
def session():
    return Mock()


class TestWithoutKey:

    @pytest.fixture
    def tracker(self, monkeypatch, session):
        monkeypatch.delenv("ISSUE_RUNNER_MISSING_KEY", raising=False)
        return LinearTracker(TrackerConfig(api_key_env_var="ISSUE_RUNNER_MISSING_KEY"), session=session)

    def test_disabled(self, tracker, session):
        assert not tracker.enabled
        assert tracker.get_status("ENG-1") is None
        assert tracker.add_comment("ENG-1", "hi") is False
        assert tracker.update_body("ENG-1", "body") is False
        assert tracker.update_status("ENG-1", "Done") is False
        assert tracker.check_connection() is False
        session.post.assert_not_called()

    def test_get_issue_placeholder(self, tracker):
        snapshot = tracker.get_issue("ENG-1")
        assert snapshot.identifier == "ENG-1"
        assert snapshot.title == "ENG-1"
        assert snapshot.status == "Unknown"


class TestRequests:

    def test_get_issue(self, config, session):
        session.post.return_value = _response({"issue": {
            "identifier": "ENG-1",
            "title": "Add login",
            "description": "Users need to log in.",
            "state": {"name": "In Review"},
            "assignee": {"name": "Sam"},
            "priority": 2,
        }})
        snapshot = LinearTracker(config, session=session).get_issue("ENG-1")

        assert snapshot.title == "Add login"
        assert snapshot.status == "In Review"
        assert snapshot.assignee == "Sam"
        kwargs = session.post.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "lin_api_test"
        assert kwargs["json"]["variables"] == {"id": "ENG-1"}

    def test_graphql_errors_become_placeholder(self, config, session):
        session.post.return_value = _response(errors=[{"message": "not found"}])
        assert LinearTracker(config, session=session).get_issue("ENG-9").status == "Unknown"

    def test_transport_error_is_not_raised(self, config, session):
        session.post.side_effect = requests.ConnectionError("offline")
        tracker = LinearTracker(config, session=session)
        assert tracker.get_status("ENG-1") is None
        assert tracker.add_comment("ENG-1", "hi") is False

    def test_http_error(self, config, session):
        session.post.return_value = _response(status=500)
        with pytest.raises(TrackerError):
            LinearTracker(config, session=session)._graphql("query { viewer { id } }")

    def test_get_status(self, config, session):
        session.post.return_value = _response({"issue": {"state": {"name": "Done"}}})
        assert LinearTracker(config, session=session).get_status("ENG-1") == "Done"

    def test_add_comment(self, config, session):
        session.post.return_value = _response({"commentCreate": {"success": True}})
        assert LinearTracker(config, session=session).add_comment("ENG-1", "hello")
        variables = session.post.call_args.kwargs["json"]["variables"]
        assert variables == {"input": {"issueId": "ENG-1", "body": "hello"}}

    def test_unsuccessful_mutation(self, config, session):
        session.post.return_value = _response({"issueUpdate": {"success": False}})
        assert LinearTracker(config, session=session).update_body("ENG-1", "x") is False

    def test_check_connection(self, config, session):
        session.post.return_value = _response({"viewer": {"id": "u1"}})
        assert LinearTracker(config, session=session).check_connection()


class TestWorkflowStates:

    def test_pagination_and_keys(self, config, session):
        session.post.side_effect = [
            _response({"workflowStates": {
                "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
                "nodes": [
                    {"id": "s1", "name": "Done", "team": {"key": "ENG"}},
                    {"id": "s2", "name": "Todo", "team": {"key": "ENG"}},
                ],
            }}),
            _response({"workflowStates": {
                "pageInfo": {"hasNextPage": False, "endCursor": None},
                "nodes": [{"id": "s3", "name": "Done", "team": {"key": "OPS"}}],
            }}),
        ]
        name_to_id, teams = LinearTracker(config, session=session).fetch_workflow_states()

        assert teams == ["ENG", "OPS"]
        assert name_to_id == {
            "ENG/Done": "s1",
            "ENG/Todo": "s2",
            "OPS/Done": "s3",
            "Done": "s1",
            "Todo": "s2",
        }
        second_call = session.post.call_args_list[1]
        assert second_call.kwargs["json"]["variables"] == {"cursor": "c1"}

    def test_update_status_resolves_through_mapper(self, config, session):
        mapper = Mock()
        mapper.resolve.return_value = "s-done"
        session.post.return_value = _response({"issueUpdate": {"success": True}})

        tracker = LinearTracker(config, state_mapper=mapper, session=session)
        assert tracker.update_status("ENG-12", "Done")
        mapper.resolve.assert_called_once_with("Done", "ENG")
        variables = session.post.call_args.kwargs["json"]["variables"]
        assert variables == {"id": "ENG-12", "input": {"stateId": "s-done"}}

    def test_unknown_state_sends_nothing(self, config, session):
        mapper = Mock()
        mapper.resolve.return_value = None
        tracker = LinearTracker(config, state_mapper=mapper, session=session)
        assert tracker.update_status("ENG-12", "Nowhere") is False
        session.post.assert_not_called()


def test_team_key_for():
    assert team_key_for("ENG-123") == "ENG"
    assert team_key_for("MY-TEAM-7") == "MY-TEAM"
    assert team_key_for("plain") == "plain"
