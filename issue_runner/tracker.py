"""
Issue tracker client.

TrackerClient is the interface the runner, validator and orchestrator
use. LinearTracker implements it over Linear's GraphQL API with requests.

All operations are optional in the sense of the rest of the runner:
without an API key, or when the API call fails, methods log the problem
and return a placeholder, None or False instead of raising.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional, Protocol

import requests

from issue_runner.errors import RunnerError
from issue_runner.models import IssueSnapshot

if TYPE_CHECKING:
    from issue_runner.config import TrackerConfig
    from issue_runner.logger import RunnerLogger
    from issue_runner.state_cache import StateMapper

logger = logging.getLogger(__name__)


class TrackerError(RunnerError):
    """Raised internally when a tracker request fails."""
    pass


class TrackerClient(Protocol):
    """Operations the runner needs from an issue tracker."""

    def get_issue(self, issue_id: str) -> IssueSnapshot: ...

    def get_status(self, issue_id: str) -> Optional[str]: ...

    def update_status(self, issue_id: str, status_name: str) -> bool: ...

    def add_comment(self, issue_id: str, text: str) -> bool: ...

    def update_body(self, issue_id: str, text: str) -> bool: ...

    def check_connection(self) -> bool: ...


ISSUE_QUERY = """
query($id: String!) {
    issue(id: $id) {
        id
        identifier
        title
        description
        url
        priority
        createdAt
        updatedAt
        state { name }
        assignee { name }
        team { key }
    }
}
"""

STATUS_QUERY = """
query($id: String!) {
    issue(id: $id) { state { name } }
}
"""

WORKFLOW_STATES_QUERY = """
query($cursor: String) {
    workflowStates(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes { id name team { key } }
    }
}
"""

UPDATE_ISSUE_MUTATION = """
mutation($id: String!, $input: IssueUpdateInput!) {
    issueUpdate(id: $id, input: $input) { success }
}
"""

CREATE_COMMENT_MUTATION = """
mutation($input: CommentCreateInput!) {
    commentCreate(input: $input) { success }
}
"""

VIEWER_QUERY = "query { viewer { id } }"


def team_key_for(issue_id: str) -> str:
    """Team key from an identifier like ENG-123."""
    return issue_id.rsplit("-", 1)[0] if "-" in issue_id else issue_id


class LinearTracker:
    """
    Linear GraphQL client.

    Workflow-state names are turned into ids through a StateMapper, which
    reads the shared state cache and refreshes it when stale.
    """

    def __init__(
        self,
        config: TrackerConfig,
        state_mapper: Optional[StateMapper] = None,
        logger: Optional[RunnerLogger] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.state_mapper = state_mapper
        self._logger = logger
        self._session = session or requests.Session()

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "tracker"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    @property
    def api_key(self) -> str:
        return self.config.get_api_key()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _graphql(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Run one GraphQL request.

        Raises:
            TrackerError: On missing key, transport errors, non-200 or GraphQL errors.
        """
        if not self.enabled:
            raise TrackerError(f"{self.config.api_key_env_var} is not set")

        try:
            resp = self._session.post(
                self.config.api_url,
                json={"query": query, "variables": variables or {}},
                headers={"Authorization": self.api_key, "Content-Type": "application/json"},
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as e:
            raise TrackerError(f"Request to tracker failed: {e}") from e

        if resp.status_code != 200:
            raise TrackerError(f"Tracker returned HTTP {resp.status_code}: {resp.text[:300]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise TrackerError(f"Tracker returned invalid JSON: {e}") from e

        if data.get("errors"):
            raise TrackerError(f"Tracker returned errors: {data['errors']}")
        return data.get("data") or {}

    def get_issue(self, issue_id: str) -> IssueSnapshot:
        """Fetch a work item; a placeholder snapshot when unavailable."""
        placeholder = IssueSnapshot(
            identifier=issue_id,
            title=issue_id,
            description="",
            status="Unknown",
        )
        if not self.enabled:
            self._log("tracker_disabled", {"operation": "get_issue"}, level="warn")
            return placeholder

        try:
            node = self._graphql(ISSUE_QUERY, {"id": issue_id}).get("issue")
        except TrackerError as e:
            logger.warning("Could not fetch %s: %s", issue_id, e)
            self._log("issue_fetch_failed", {"issue_id": issue_id, "error": str(e)}, level="warn")
            return placeholder

        if not node:
            return placeholder

        return IssueSnapshot(
            identifier=node.get("identifier") or issue_id,
            title=node.get("title") or "",
            description=node.get("description") or "",
            status=(node.get("state") or {}).get("name", ""),
            url=node.get("url") or "",
            priority=node.get("priority"),
            assignee=(node.get("assignee") or {}).get("name"),
            created_at=node.get("createdAt"),
            updated_at=node.get("updatedAt"),
        )

    def get_status(self, issue_id: str) -> Optional[str]:
        """Current workflow-state name, None when it cannot be determined."""
        if not self.enabled:
            return None
        try:
            node = self._graphql(STATUS_QUERY, {"id": issue_id}).get("issue")
        except TrackerError as e:
            logger.warning("Could not fetch status of %s: %s", issue_id, e)
            return None
        if not node:
            return None
        return (node.get("state") or {}).get("name")

    def update_status(self, issue_id: str, status_name: str) -> bool:
        """Move a work item to the named workflow state."""
        if not self.enabled:
            self._log("tracker_disabled", {"operation": "update_status"}, level="warn")
            return False

        state_id = None
        if self.state_mapper is not None:
            state_id = self.state_mapper.resolve(status_name, team_key_for(issue_id))
        if not state_id:
            self._log("state_not_found", {"issue_id": issue_id, "status": status_name}, level="warn")
            return False

        return self._mutate(
            UPDATE_ISSUE_MUTATION,
            {"id": issue_id, "input": {"stateId": state_id}},
            "issueUpdate",
            issue_id,
        )

    def add_comment(self, issue_id: str, text: str) -> bool:
        if not self.enabled:
            self._log("tracker_disabled", {"operation": "add_comment"}, level="warn")
            return False
        return self._mutate(
            CREATE_COMMENT_MUTATION,
            {"input": {"issueId": issue_id, "body": text}},
            "commentCreate",
            issue_id,
        )

    def update_body(self, issue_id: str, text: str) -> bool:
        if not self.enabled:
            self._log("tracker_disabled", {"operation": "update_body"}, level="warn")
            return False
        return self._mutate(
            UPDATE_ISSUE_MUTATION,
            {"id": issue_id, "input": {"description": text}},
            "issueUpdate",
            issue_id,
        )

    def _mutate(self, mutation: str, variables: dict[str, Any], field: str, issue_id: str) -> bool:
        try:
            data = self._graphql(mutation, variables)
        except TrackerError as e:
            logger.warning("%s failed for %s: %s", field, issue_id, e)
            self._log("tracker_write_failed", {
                "issue_id": issue_id,
                "mutation": field,
                "error": str(e),
            }, level="warn")
            return False
        return bool((data.get(field) or {}).get("success"))

    def check_connection(self) -> bool:
        if not self.enabled:
            return False
        try:
            data = self._graphql(VIEWER_QUERY)
        except TrackerError as e:
            logger.warning("Tracker connection check failed: %s", e)
            return False
        return bool((data.get("viewer") or {}).get("id"))

    def fetch_workflow_states(self) -> tuple[dict[str, str], list[str]]:
        """
        Fetch every workflow state.

        Returns:
            (name_to_id, team_keys). Each state is stored under
            "<TEAM>/<name>" and, for the first team that has it, under
            the bare name.

        Raises:
            TrackerError: If the states cannot be fetched. The cache
            refresher treats this as a failed refresh.
        """
        name_to_id: dict[str, str] = {}
        teams: list[str] = []
        cursor = None
        while True:
            page = self._graphql(WORKFLOW_STATES_QUERY, {"cursor": cursor}).get("workflowStates") or {}
            for node in page.get("nodes", []):
                team = (node.get("team") or {}).get("key", "")
                if team and team not in teams:
                    teams.append(team)
                if team:
                    name_to_id[f"{team}/{node['name']}"] = node["id"]
                name_to_id.setdefault(node["name"], node["id"])
            info = page.get("pageInfo") or {}
            if not info.get("hasNextPage"):
                break
            cursor = info.get("endCursor")
        return name_to_id, teams
