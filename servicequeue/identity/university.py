"""Student directory lookup used when visitors queue in student mode."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol
from urllib.parse import quote

import httpx

from servicequeue.queue.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class VisitorIdentity:
    id: str
    display_name: str


class IdentityLookup(Protocol):
    async def lookup(self, visitor_id: str) -> VisitorIdentity:
        ...


@dataclass(slots=True)
class UniversityDirectoryClient:
    """Resolve a student code to a display name through the university API.

    Calls ``GET {base_url}/{student_id}`` with the ``authKey`` header. Every failure
    is reported as ``UpstreamError`` with a readable message.
    """

    base_url: str | None
    api_key: str | None
    timeout: float = 10.0
    transport: httpx.AsyncBaseTransport | None = None

    async def lookup(self, visitor_id: str) -> VisitorIdentity:
        if not self.base_url:
            raise UpstreamError("UNIVERSITY_API_URL is not set")
        if not self.api_key:
            raise UpstreamError("UNIVERSITY_API_KEY is not set")

        url = f"{self.base_url.rstrip('/')}/{quote(visitor_id, safe='')}"
        headers = {"authKey": self.api_key, "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("University API request failed: %s", exc)
            raise UpstreamError(f"University API request failed: {exc}") from exc

        if response.status_code >= 400:
            detail = response.text[:300] if response.text else ""
            suffix = f" - {detail}" if detail else ""
            raise UpstreamError(f"University API error {response.status_code}{suffix}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError("University API returned invalid JSON") from exc

        data = payload.get("data") if isinstance(payload, Mapping) else None
        if not data:
            raise UpstreamError("Student not found")
        if not isinstance(data, Mapping):
            raise UpstreamError("University API returned a malformed student record")
        return _to_identity(data, visitor_id)


def _to_identity(data: Mapping[str, Any], requested_id: str) -> VisitorIdentity:
    first = str(data.get("firstnameTh") or "").strip()
    last = str(data.get("lastnameTh") or "").strip()
    if not first or not last:
        raise UpstreamError("Missing firstnameTh/lastnameTh from University API")
    code = data.get("studentCode") or requested_id
    return VisitorIdentity(id=str(code), display_name=f"{first} {last}")
