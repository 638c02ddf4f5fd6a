"""
External collaborators — event source, profile source, severity scorer.

The crisis rooms consume these; they do not own them. SQL-backed sources
live in crisiscomm.db.repositories.
"""

from typing import Any, Iterable, Optional, Protocol

import httpx
import structlog

from crisiscomm.schemas.room import GeopoliticalEvent

logger = structlog.get_logger(__name__)

Profile = dict[str, Any]


class EventSource(Protocol):
    async def get_event(self, event_id: str) -> Optional[GeopoliticalEvent]: ...


class ProfileSource(Protocol):
    async def list_profiles(self) -> list[Profile]: ...


class SeverityScorer(Protocol):
    async def score(self, profile: Profile, event: GeopoliticalEvent) -> float:
        """Relevance of `event` to `profile`, in [0, 1]."""
        ...


# ── In-memory sources ──────────────────────────────────────────────────


class InMemoryEventSource:
    def __init__(self, events: Iterable[GeopoliticalEvent] = ()):
        self._events = {e.id: e for e in events}

    def add(self, event: GeopoliticalEvent) -> None:
        self._events[event.id] = event

    async def get_event(self, event_id: str) -> Optional[GeopoliticalEvent]:
        return self._events.get(event_id)


class InMemoryProfileSource:
    def __init__(self, profiles: Iterable[Profile] = ()):
        self._profiles = list(profiles)

    async def list_profiles(self) -> list[Profile]:
        return list(self._profiles)


# ── HTTP scorer ────────────────────────────────────────────────────────


def _extract_score(body: Any) -> float:
    """
    Accepts {"relevance_score": x}, {"relevanceScore": x} or
    {"data": {...}} envelopes.
    """
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, dict):
            body = data
        for key in ("relevance_score", "relevanceScore", "score"):
            if key in body:
                return float(body[key])
    return 0.0


class HttpSeverityScorer:
    """
    HTTP client for the external relevance scoring service.

    The scorer is external — room creation does NOT depend on its
    availability. Failures score 0 (graceful degradation).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers=headers,
            transport=self._transport,
        )

    async def score(self, profile: Profile, event: GeopoliticalEvent) -> float:
        if not self.base_url:
            return 0.0
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{self.base_url}/api/v1/score",
                    json={"profile": profile, "event": event.model_dump(mode="json")},
                )
                resp.raise_for_status()
                value = _extract_score(resp.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("scoring_unavailable", error=str(e), event_id=event.id)
            return 0.0
        return min(max(value, 0.0), 1.0)


class StaticSeverityScorer:
    """Scores every profile the same. Used when no scoring service is configured."""

    def __init__(self, value: float = 0.0):
        self.value = value

    async def score(self, profile: Profile, event: GeopoliticalEvent) -> float:
        return self.value
