"""
ClickUp API Client

Thin wrapper over the ClickUp REST v2 API. ClickUp folders in the configured
space are the source of truth for project names; tasks are used to push
financial summaries back.
"""
import logging
import re
from typing import Any, Dict, List, Optional

import requests

from margin_tracker.core.config import settings
from margin_tracker.core.errors import UpstreamError

logger = logging.getLogger(__name__)


class ClickUpAPIError(UpstreamError):
    """Non-2xx answer from ClickUp."""
    error = "ClickUp API error"

    def __init__(self, status_code: int, reason: str):
        self.upstream_status = status_code
        super().__init__(f"ClickUp API error: {status_code} {reason}")


def _flag(value: bool) -> str:
    return "true" if value else "false"


class ClickUpClient:
    """
    ClickUp REST client bound to one list and one space.

    Args:
        api_token: Personal or OAuth token, sent as-is in the Authorization header
        list_id: List new tasks are created in
        space_id: Space whose folders represent projects
        base_url: API root
        session: Optional ``requests.Session`` (injected in tests)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        api_token: str,
        list_id: str,
        space_id: str,
        base_url: str = "https://api.clickup.com/api/v2",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.list_id = list_id
        self.space_id = space_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": api_token,
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        response = self.session.request(
            method, url, headers=self.headers, params=params, json=json, timeout=self.timeout
        )
        if not response.ok:
            logger.error("ClickUp %s %s failed: %s %s", method, path, response.status_code, response.reason)
            raise ClickUpAPIError(response.status_code, response.reason)
        return response.json()

    def get_folders(self, archived: Optional[bool] = None) -> Dict[str, Any]:
        """Folders of the configured space. Each folder is one project."""
        params = {}
        if archived is not None:
            params["archived"] = _flag(archived)
        return self._request("GET", f"/space/{self.space_id}/folder", params=params)

    def get_tasks(
        self,
        archived: Optional[bool] = None,
        include_closed: Optional[bool] = None,
        page: Optional[int] = None,
        order_by: Optional[str] = None,
        reverse: Optional[bool] = None,
        subtasks: Optional[bool] = None,
        statuses: Optional[List[str]] = None,
        include_markdown_description: Optional[bool] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        for name, value in (
            ("archived", archived),
            ("include_closed", include_closed),
            ("reverse", reverse),
            ("subtasks", subtasks),
            ("include_markdown_description", include_markdown_description),
        ):
            if value is not None:
                params[name] = _flag(value)
        if page is not None:
            params["page"] = str(page)
        if order_by:
            params["order_by"] = order_by
        if statuses:
            params["statuses[]"] = ",".join(statuses)
        return self._request("GET", f"/list/{self.list_id}/task", params=params)

    def get_task(self, task_id: str, custom_task_ids: Optional[bool] = None,
                 team_id: Optional[str] = None, include_subtasks: Optional[bool] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if custom_task_ids is not None:
            params["custom_task_ids"] = _flag(custom_task_ids)
        if team_id:
            params["team_id"] = team_id
        if include_subtasks is not None:
            params["include_subtasks"] = _flag(include_subtasks)
        return self._request("GET", f"/task/{task_id}", params=params)

    def create_task(self, task_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/list/{self.list_id}/task", json=task_data)

    def update_task(self, task_id: str, task_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/task/{task_id}", json=task_data)

    def add_comment(self, task_id: str, comment_text: str, assignee: Optional[int] = None,
                    notify_all: Optional[bool] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"comment_text": comment_text}
        if assignee is not None:
            body["assignee"] = assignee
        if notify_all is not None:
            body["notify_all"] = notify_all
        return self._request("POST", f"/task/{task_id}/comment", json=body)

    def get_time_entries(self, task_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/task/{task_id}/time")

    def create_time_entry(self, task_id: str, time_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/task/{task_id}/time", json=time_data)

    def test_connection(self) -> Dict[str, Any]:
        """Check the token against ``GET /user``. Never raises."""
        try:
            user = self._request("GET", "/user")
        except ClickUpAPIError as exc:
            return {"success": False, "error": f"API connection failed: {exc.upstream_status}"}
        except requests.RequestException as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "user": user.get("user")}


def create_clickup_client(session: Optional[requests.Session] = None) -> Optional[ClickUpClient]:
    """Build a client from settings, or return None when ClickUp is not configured."""
    if not (settings.CLICKUP_API_TOKEN and settings.CLICKUP_LIST_ID and settings.CLICKUP_SPACE_ID):
        logger.warning("ClickUp configuration missing. Integration disabled.")
        return None
    return ClickUpClient(
        api_token=settings.CLICKUP_API_TOKEN,
        list_id=settings.CLICKUP_LIST_ID,
        space_id=settings.CLICKUP_SPACE_ID,
        base_url=settings.CLICKUP_BASE_URL,
        session=session,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )


_DASH_PATTERN = re.compile(r"^([^-]+)\s*-\s*(.+)$")
_BRACKET_PATTERN = re.compile(r"^\[([^\]]+)\]\s*(.+)$")
_FOR_PATTERN = re.compile(r".*\s+for\s+(.+)$", re.IGNORECASE)


def extract_client_from_folder_name(folder_name: str) -> Optional[str]:
    """
    Guess the client from a folder name.

    Recognised forms, in order: "Client - Project", "[Client] Project",
    "Project for Client". Otherwise the first word of a multi-word name.
    """
    for pattern in (_DASH_PATTERN, _BRACKET_PATTERN, _FOR_PATTERN):
        match = pattern.match(folder_name)
        if match:
            return match.group(1).strip()
    words = folder_name.split(" ")
    if len(words) > 1:
        return words[0]
    return None


_STATUS_MAP = {
    "open": "active",
    "in progress": "active",
    "in review": "active",
    "done": "completed",
    "closed": "completed",
    "cancelled": "archived",
    "on hold": "on-hold",
    "blocked": "on-hold",
}


def map_clickup_status(clickup_status: str) -> str:
    return _STATUS_MAP.get(clickup_status.lower(), "active")
