"""Microsoft Graph client for Microsoft To Do task lists."""

import logging
import threading
from collections.abc import Callable
from datetime import date
from typing import Any

import requests

from ..config import Config
from ..errors import (
    AuthError,
    NetworkError,
    RemoteApiError,
    classify_status,
    mask_secrets,
)
from ..sync.models import RemoteTask
from ..validators import validate_list_name, validate_task_title

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str]


class GraphTodoClient:
    """Thin, synchronous wrapper around the Graph ``/me/todo`` endpoints.

    Token acquisition is not handled here: *token_provider* is called for
    every request and must return a valid access token. No retries are
    attempted; failures surface as ``RemoteApiError``/``NetworkError``.
    """

    def __init__(
        self,
        config: Config,
        token_provider: TokenProvider | None = None,
    ):
        self.config = config
        self._token_provider = token_provider or self._static_token
        self._thread_local = threading.local()
        self._default_list_id: str | None = config.list_id or None

    @property
    def session(self) -> requests.Session:
        """Session bound to the calling thread."""
        return self._get_session()

    def _static_token(self) -> str:
        return self.config.access_token

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )
        return session

    def _url(self, path: str) -> str:
        return f"{self.config.graph_base_url.rstrip('/')}/{path.lstrip('/')}"

    def _auth_header(self) -> dict[str, str]:
        try:
            token = self._token_provider()
        except Exception as exc:
            raise AuthError(
                f"Failed to obtain access token: {mask_secrets(str(exc))}"
            ) from exc
        if not token:
            raise AuthError(
                "No access token available. Set TODO_ACCESS_TOKEN or sign in again."
            )
        return {"Authorization": f"Bearer {token}"}

    def _request(
        self,
        method: str,
        path_or_url: str,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make a Graph request and return the decoded JSON body.
        """
        url = (
            path_or_url
            if path_or_url.startswith("http")
            else self._url(path_or_url)
        )
        session = self._get_session()
        try:
            response = session.request(
                method,
                url,
                json=json_body,
                headers=self._auth_header(),
                timeout=self.config.timeout,
            )
        except requests.RequestException as exc:
            raise NetworkError(
                f"{method} {url} failed: {mask_secrets(str(exc))}"
            ) from exc

        if response.status_code >= 400:
            raise self._error_from_response(method, url, response)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_from_response(
        method: str, url: str, response: requests.Response
    ) -> RemoteApiError:
        status = response.status_code
        detail = response.reason or ""
        try:
            error = response.json().get("error", {})
            code = error.get("code")
            message = error.get("message")
            if code or message:
                detail = ": ".join(p for p in (code, message) if p)
        except ValueError:
            pass
        kind = classify_status(status)
        logger.warning("Graph %s %s -> %d (%s)", method, url, status, kind)
        return RemoteApiError(
            mask_secrets(f"{method} {url} returned {status}: {detail}"),
            kind=kind,
            status=status,
        )

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def get_task_lists(self) -> list[dict[str, Any]]:
        """
        Return every task list of the signed-in user.
        """
        return list(self._paged("me/todo/lists"))

    def get_or_create_task_list(self, name: str) -> str:
        """
        Return the id of the list named *name*, creating it when missing.
        """
        ok, message = validate_list_name(name)
        if not ok:
            raise ValueError(message)
        for task_list in self.get_task_lists():
            if task_list.get("displayName") == name:
                return task_list["id"]
        logger.info("Creating task list %r", name)
        created = self._request(
            "POST", "me/todo/lists", {"displayName": name}
        )
        return created["id"]

    def get_default_list_id(self) -> str | None:
        return self._default_list_id

    def set_default_list_id(self, list_id: str) -> None:
        self._default_list_id = list_id

    def _resolve_list_id(self, list_id: str | None) -> str:
        resolved = list_id or self._default_list_id
        if not resolved:
            raise RemoteApiError(
                "No default task list configured", kind="not_found"
            )
        return resolved

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _paged(self, path: str):
        url: str | None = path
        while url:
            page = self._request("GET", url) or {}
            yield from page.get("value", [])
            url = page.get("@odata.nextLink")

    def get_tasks(self, list_id: str | None = None) -> list[RemoteTask]:
        """
        Return every task in a list, following server-side paging.
        """
        resolved = self._resolve_list_id(list_id)
        tasks = [
            RemoteTask.from_graph(item)
            for item in self._paged(f"me/todo/lists/{resolved}/tasks")
        ]
        logger.debug("Fetched %d tasks from list %s", len(tasks), resolved)
        return tasks

    def create_task(self, list_id: str, title: str) -> RemoteTask:
        ok, message = validate_task_title(title)
        if not ok:
            raise ValueError(message)
        created = self._request(
            "POST",
            f"me/todo/lists/{self._resolve_list_id(list_id)}/tasks",
            {"title": title},
        )
        return RemoteTask.from_graph(created)

    def create_task_with_start_date(
        self, list_id: str, title: str, start_date: date
    ) -> RemoteTask:
        """
        Create a task whose start date is *start_date* (midnight UTC).
        """
        ok, message = validate_task_title(title)
        if not ok:
            raise ValueError(message)
        body = {
            "title": title,
            "startDateTime": {
                "dateTime": f"{start_date.isoformat()}T00:00:00.000Z",
                "timeZone": "UTC",
            },
        }
        created = self._request(
            "POST",
            f"me/todo/lists/{self._resolve_list_id(list_id)}/tasks",
            body,
        )
        return RemoteTask.from_graph(created)

    def complete_task(self, list_id: str, task_id: str) -> None:
        self._request(
            "PATCH",
            f"me/todo/lists/{self._resolve_list_id(list_id)}/tasks/{task_id}",
            {"status": "completed"},
        )

    def update_task_title(
        self, list_id: str, task_id: str, title: str
    ) -> None:
        ok, message = validate_task_title(title)
        if not ok:
            raise ValueError(message)
        self._request(
            "PATCH",
            f"me/todo/lists/{self._resolve_list_id(list_id)}/tasks/{task_id}",
            {"title": title},
        )

    def validate_connection(self) -> str:
        """
        Validate the token by reading the signed-in user's profile.
        Returns the user's principal name (or display name).
        """
        me = self._request("GET", "me") or {}
        return str(
            me.get("userPrincipalName") or me.get("displayName") or ""
        )
