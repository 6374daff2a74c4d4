"""Unit statuses from the community wiki, given to the model as context."""

from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)

WIKI_QUERY = "[[Has unit identifier::+]]|?Has unit identifier|?Has unit status|limit=200"
USER_AGENT = "train-logging-bot"


def parse_statuses(data: dict[str, Any]) -> dict[str, str]:
    """Extract unit -> status from a Semantic MediaWiki ``ask`` response."""
    results = data.get("query", {}).get("results", {})
    pages = results.values() if isinstance(results, dict) else results
    statuses: dict[str, str] = {}
    for page in pages:
        printouts = page.get("printouts", {})
        identifiers = printouts.get("Has unit identifier") or []
        if not identifiers:
            continue
        status = printouts.get("Has unit status") or []
        statuses[str(identifiers[0])] = str(status[0]) if status else "Unknown"
    return statuses


class UnitStatusDirectory:
    """Cached unit statuses. Empty until the first successful refresh."""

    def __init__(
        self,
        api_url: str,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_url = api_url
        self._timeout = timeout
        self._client = client
        self._statuses: dict[str, str] = {}
        self._logger = logger.bind(component="unit_status_directory")

    @property
    def statuses(self) -> dict[str, str]:
        return dict(self._statuses)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def refresh(self) -> None:
        """Reload statuses. On failure the directory is left empty."""
        self._statuses = {}
        client = await self._get_client()
        try:
            response = await client.get(
                self._api_url,
                params={"action": "ask", "format": "json", "query": WIKI_QUERY},
                headers={"User-Agent": USER_AGENT},
            )
            response.raise_for_status()
            self._statuses = parse_statuses(response.json())
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            self._logger.error("wiki_refresh_failed", error=str(e))
            return
        self._logger.info("wiki_refreshed", units=len(self._statuses))
