"""Tests for the command-line entry point."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from literature_stream.__main__ import build_parser, main, run_search
from literature_stream.domain.entities.paper import Paper
from literature_stream.domain.entities.session import SearchSnapshot, SelectionResult, SessionError, SessionStatus
from literature_stream.shared.exceptions import ReconnectExhaustedError


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args(["q methodology"])
        assert args.query == "q methodology"
        assert args.sources == []
        assert args.timeout == 120.0
        assert args.verbose is False

    def test_repeatable_sources(self):
        args = build_parser().parse_args(["q", "--source", "openalex", "--source", "pubmed", "--limit", "50"])
        assert args.sources == ["openalex", "pubmed"]
        assert args.limit == 50

    def test_purpose_choices(self):
        args = build_parser().parse_args(["q", "--purpose", "q_methodology"])
        assert args.purpose == "q_methodology"
        with pytest.raises(SystemExit):
            build_parser().parse_args(["q", "--purpose", "astrology"])


def _mock_client(snapshot=None, wait_error=None):
    client = MagicMock()
    client.connect = AsyncMock()
    client.close = AsyncMock()
    client.start_search.return_value = "s1"
    client.wait_until_finished = AsyncMock(return_value=snapshot, side_effect=wait_error)
    return client


@pytest.fixture
def patch_client(monkeypatch):
    monkeypatch.delenv("LITSTREAM_URL", raising=False)

    def _patch(client):
        container = MagicMock()
        container.search_client.return_value = client
        return patch("literature_stream.__main__.create_container", return_value=container)

    return _patch


class TestRunSearch:
    async def test_complete_search_prints_results(self, patch_client, capsys):
        snapshot = SearchSnapshot(
            search_id="s1",
            status=SessionStatus.COMPLETE,
            papers=(Paper(id="W1", title="Q methodology primer", year=2019),),
            selection=SelectionResult(ranked_count=10, selected_count=1, target_count=1, avg_quality_score=80.0),
        )
        client = _mock_client(snapshot)
        args = build_parser().parse_args(["q methodology", "--limit", "10"])
        with patch_client(client):
            assert await run_search(args) == 0

        out = capsys.readouterr().out
        assert "Q methodology primer (2019)" in out
        assert "Selected 1 of 10" in out
        options = client.start_search.call_args.args[1]
        assert options.limit == 10
        client.close.assert_awaited_once()

    async def test_recoverable_error_prints_partial_results(self, patch_client, capsys):
        snapshot = SearchSnapshot(
            search_id="s1",
            status=SessionStatus.ERROR,
            papers=(Paper(id="W1", title="Partial"),),
            error=SessionError(message="connection lost", recoverable=True, code="CONNECTION_LOST"),
        )
        with patch_client(_mock_client(snapshot)):
            assert await run_search(build_parser().parse_args(["q"])) == 1
        assert "Partial" in capsys.readouterr().out

    async def test_timeout_cancels(self, patch_client):
        client = _mock_client(wait_error=asyncio.TimeoutError())
        with patch_client(client):
            assert await run_search(build_parser().parse_args(["q", "--timeout", "1"])) == 1
        client.cancel_search.assert_called_once_with("s1")
        client.close.assert_awaited_once()

    async def test_failed_connect_still_closes_client(self, patch_client):
        client = _mock_client()
        client.connect.side_effect = ReconnectExhaustedError(3)
        with patch_client(client):
            with pytest.raises(ReconnectExhaustedError):
                await run_search(build_parser().parse_args(["q"]))
        client.start_search.assert_not_called()
        client.close.assert_awaited_once()


class TestMain:
    def test_invalid_url_exits_nonzero(self, monkeypatch):
        monkeypatch.delenv("LITSTREAM_URL", raising=False)
        assert main(["q", "--url", "http://not-a-websocket"]) == 1

    def test_failed_connect_exits_nonzero(self, patch_client):
        client = _mock_client()
        client.connect.side_effect = ReconnectExhaustedError(3)
        with patch_client(client):
            assert main(["q"]) == 1
        client.close.assert_awaited_once()
