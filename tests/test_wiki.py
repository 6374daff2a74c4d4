"""Tests for the wiki unit status directory."""

import httpx
import pytest

from train_log.nlp.wiki import USER_AGENT, UnitStatusDirectory, parse_statuses

ASK_RESPONSE = {
    "query": {
        "results": {
            "Metrocar 4073": {
                "printouts": {"Has unit identifier": ["4073"], "Has unit status": ["Active"]}
            },
            "Metrocar 4001": {"printouts": {"Has unit identifier": [4001], "Has unit status": []}},
            "Broken page": {"printouts": {}},
        }
    }
}


def test_parse_statuses():
    """Test statuses are keyed by unit and missing statuses are Unknown."""
    assert parse_statuses(ASK_RESPONSE) == {"4073": "Active", "4001": "Unknown"}


def test_parse_statuses_empty():
    """Test an empty result set."""
    assert parse_statuses({"query": {"results": []}}) == {}


class TestUnitStatusDirectory:
    """Tests for UnitStatusDirectory."""

    @pytest.mark.asyncio
    async def test_refresh(self):
        """Test a successful refresh loads statuses."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=ASK_RESPONSE)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        directory = UnitStatusDirectory("https://wiki.example.com/api.php", client=client)

        await directory.refresh()

        assert directory.statuses == {"4073": "Active", "4001": "Unknown"}
        assert seen[0].url.params["action"] == "ask"
        assert seen[0].headers["User-Agent"] == USER_AGENT
        await directory.close()

    @pytest.mark.asyncio
    async def test_failed_refresh_leaves_empty(self):
        """Test an HTTP failure clears previously loaded statuses."""
        responses = [httpx.Response(200, json=ASK_RESPONSE), httpx.Response(503)]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        directory = UnitStatusDirectory("https://wiki.example.com/api.php", client=client)
        await directory.refresh()

        await directory.refresh()

        assert directory.statuses == {}
        await directory.close()

    @pytest.mark.asyncio
    async def test_invalid_json_leaves_empty(self):
        """Test an unparseable body is treated as a failure."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        )
        directory = UnitStatusDirectory("https://wiki.example.com/api.php", client=client)

        await directory.refresh()

        assert directory.statuses == {}
        await directory.close()
