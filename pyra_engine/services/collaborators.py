"""
Business collaborators used by automation actions.

The engine does not own notifications, projects, invoices, activity or
email. It reaches them through the narrow Collaborators interface; the
shipped implementation forwards each call to the workspace's business API.
"""
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from urllib.parse import quote

import httpx

from pyra_engine.logging_config import get_logger


log = get_logger(component="collaborators")


@dataclass(frozen=True)
class Outcome:
    """Result of a collaborator call."""
    ok: bool
    error: Optional[str] = None


class Collaborators(Protocol):
    """Side effects available to automation actions."""

    async def create_notification(
        self, recipient: str, title: str, message: str, notification_type: str
    ) -> Outcome: ...

    async def change_project_status(self, project_id: str, new_status: str) -> Outcome: ...

    async def create_invoice(self, config: dict[str, Any]) -> Outcome: ...

    async def log_activity(
        self, action_type: str, message: str, details: dict[str, Any]
    ) -> Outcome: ...

    async def send_email(self, config: dict[str, Any]) -> Outcome: ...


class HttpCollaborators:
    """
    Collaborators backed by the business API.

    Every call is a single request with a bounded timeout. Failures are
    returned as an Outcome, never raised.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: Optional[str],
        token: Optional[str] = None,
        timeout: float = 5.0,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/") if base_url else None
        self.token = token
        self.timeout = timeout

    async def _call(self, method: str, path: str, body: dict[str, Any]) -> Outcome:
        if not self.base_url:
            return Outcome(ok=False, error="Business API is not configured")

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = await self.client.request(
                method,
                f"{self.base_url}{path}",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            log.warning("collaborator_call_failed", path=path, error=str(e))
            return Outcome(ok=False, error=str(e) or e.__class__.__name__)

        if response.is_success:
            return Outcome(ok=True)
        return Outcome(ok=False, error=f"HTTP {response.status_code}")

    async def create_notification(
        self, recipient: str, title: str, message: str, notification_type: str
    ) -> Outcome:
        return await self._call("POST", "/notifications", {
            "recipient": recipient,
            "title": title,
            "message": message,
            "type": notification_type,
            "source": "automation",
        })

    async def change_project_status(self, project_id: str, new_status: str) -> Outcome:
        return await self._call(
            "PATCH",
            f"/projects/{quote(project_id, safe='')}",
            {"status": new_status},
        )

    async def create_invoice(self, config: dict[str, Any]) -> Outcome:
        return await self._call("POST", "/invoices", config)

    async def log_activity(
        self, action_type: str, message: str, details: dict[str, Any]
    ) -> Outcome:
        return await self._call("POST", "/activity", {
            "action_type": action_type,
            "message": message,
            "details": details,
            "username": "system",
        })

    async def send_email(self, config: dict[str, Any]) -> Outcome:
        return await self._call("POST", "/emails", config)
