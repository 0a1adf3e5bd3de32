"""Tests for SearchStreamClient over a transport with an in-memory connection."""

from __future__ import annotations

import asyncio

import pytest

from literature_stream.application.search.client import CONNECTION_LOST_CODE, SearchStreamClient
from literature_stream.domain.entities.commands import EnrichmentPriority, SearchOptions
from literature_stream.domain.entities.session import ConnectionStatus, SessionStatus, SourceStatus
from literature_stream.infrastructure.stream.transport import StreamTransport
from literature_stream.shared.exceptions import ConnectionLostError, InvalidQueryError


@pytest.fixture
def stream_config(fast_config):
    return fast_config.with_overrides(slow_source_grace_seconds=0.05)


@pytest.fixture
async def make_client(stream_config, recording_sleep):
    created: list[SearchStreamClient] = []

    def _make(connector) -> SearchStreamClient:
        transport = StreamTransport(stream_config, connect=connector, sleep=recording_sleep)
        ids = iter(f"s{n}" for n in range(1, 100))
        client = SearchStreamClient(transport, config=stream_config, id_factory=lambda: next(ids))
        created.append(client)
        return client

    yield _make
    for client in created:
        await client.close()


@pytest.fixture
async def connected(make_client, new_connection, new_connector):
    """A connected client and its server-side connection."""
    connection = new_connection()
    client = make_client(new_connector(connection))
    await client.connect()
    return client, connection


class TestStartSearch:
    async def test_sends_start_frame(self, connected, eventually):
        client, connection = connected
        search_id = client.start_search("  climate attitudes ", SearchOptions(limit=5))

        assert search_id == "s1"
        assert client.active_search_id == "s1"
        await eventually(lambda: connection.sent)
        assert connection.sent_events()[0] == {
            "event": "search:start",
            "data": {"searchId": "s1", "query": "climate attitudes", "options": {"limit": 5}},
        }
        assert client.snapshot().status is SessionStatus.PENDING

    async def test_blank_query_rejected(self, connected):
        client, connection = connected
        with pytest.raises(InvalidQueryError):
            client.start_search("   ")
        assert client.search_ids == []
        assert connection.sent == []

    async def test_requested_sources_tracked(self, connected):
        client, _ = connected
        client.start_search("q", SearchOptions(sources=("openalex", "pubmed")))
        snapshot = client.snapshot()
        assert [s.source for s in snapshot.sources] == ["openalex", "pubmed"]

    async def test_new_search_becomes_active(self, connected):
        client, _ = connected
        client.start_search("first")
        client.start_search("second")
        assert client.active_search_id == "s2"
        assert client.search_ids == ["s1", "s2"]


class TestRouting:
    async def test_events_routed_by_search_id(self, connected, make_frame, eventually):
        client, connection = connected
        client.start_search("first")
        client.start_search("second")

        connection.feed(make_frame("search:started", search_id="s2", query="second"))
        await eventually(lambda: client.snapshot("s2").status is SessionStatus.ACTIVE)
        assert client.snapshot("s1").status is SessionStatus.PENDING

    async def test_unknown_search_dropped(self, connected, make_event):
        client, _ = connected
        client.start_search("first")
        client.handle_event(make_event("search:started", search_id="elsewhere", query="x"))
        assert client.search_ids == ["s1"]
        assert client.snapshot("elsewhere") is None

    async def test_forgotten_search_becomes_stale(self, connected, make_event):
        client, _ = connected
        client.start_search("first")
        assert client.forget("s1") is True
        assert client.active_search_id is None
        client.handle_event(make_event("search:started", search_id="s1", query="first"))
        assert client.snapshot("s1") is None
        assert client.forget("s1") is False


class TestCancel:
    async def test_cancel_is_local_and_immediate(self, connected, make_event, eventually):
        client, connection = connected
        client.start_search("first")

        assert client.cancel_search() is True
        assert client.snapshot().status is SessionStatus.CANCELLED
        await eventually(lambda: len(connection.sent) == 2)
        assert connection.sent_events()[1] == {"event": "search:cancel", "data": {"searchId": "s1"}}

        client.handle_event(make_event("search:started", search_id="s1", query="first"))
        assert client.snapshot().status is SessionStatus.CANCELLED
        snapshot = await client.wait_until_finished("s1", timeout=0.1)
        assert snapshot.status is SessionStatus.CANCELLED

    async def test_cancel_twice_or_unknown(self, connected):
        client, _ = connected
        assert client.cancel_search() is False
        client.start_search("first")
        client.cancel_search()
        assert client.cancel_search("s1") is False
        assert client.cancel_search("nope") is False


class TestEnrichment:
    async def test_request_sends_only_needed_ids(self, connected, make_event, make_paper, eventually):
        client, connection = connected
        client.start_search("first")
        client.handle_event(
            make_event(
                "search:papers",
                search_id="s1",
                papers=[make_paper("W1"), make_paper("W2")],
                source="openalex",
                batchNumber=1,
                cumulativeCount=2,
            )
        )
        client.handle_event(make_event("search:enrichment", search_id="s1", paperId="W2", venue="Nature"))

        requested = client.request_enrichment(["W1", "W2", "ghost"], EnrichmentPriority.HIGH)
        assert requested == ["W1"]
        await eventually(lambda: len(connection.sent) == 2)
        assert connection.sent_events()[1]["data"] == {
            "searchId": "s1",
            "paperIds": ["W1"],
            "priority": "high",
        }
        assert client.snapshot().enrichment_pending == 1

    async def test_unknown_papers_not_requested(self, connected, eventually):
        client, connection = connected
        client.start_search("first")
        await eventually(lambda: connection.sent)
        assert client.request_enrichment(["ghost"]) == []
        await asyncio.sleep(0.01)
        assert len(connection.sent) == 1

    async def test_prefetch(self, connected, eventually):
        client, connection = connected
        client.start_search("first")
        client.prefetch_enrichment(["W5", "W5", "W6"])
        await eventually(lambda: len(connection.sent) == 2)
        assert connection.sent_events()[1] == {
            "event": "enrichment:prefetch",
            "data": {"searchId": "s1", "paperIds": ["W5", "W6"]},
        }


class TestListeners:
    async def test_listener_receives_snapshots(self, connected, make_event):
        client, _ = connected
        seen = []
        unsubscribe = client.subscribe(lambda sid, snap: seen.append((sid, snap.status)))

        client.start_search("first")
        client.handle_event(make_event("search:started", search_id="s1", query="first"))
        assert seen == [("s1", SessionStatus.PENDING), ("s1", SessionStatus.ACTIVE)]

        unsubscribe()
        client.handle_event(make_event("search:error", search_id="s1", error="x", recoverable=False))
        assert len(seen) == 2

    async def test_unchanged_state_not_published(self, connected, make_event):
        client, _ = connected
        client.start_search("first")
        seen = []
        client.subscribe(lambda sid, snap: seen.append(sid))
        event = make_event("search:started", search_id="s1", query="first")
        client.handle_event(event)
        client.handle_event(event)
        assert len(seen) == 1

    async def test_failing_listener_isolated(self, connected, make_event):
        client, _ = connected
        seen = []

        def broken(search_id, snapshot):
            raise RuntimeError("render failed")

        client.subscribe(broken)
        client.subscribe(lambda sid, snap: seen.append(sid))
        client.start_search("first")
        assert seen == ["s1"]


class TestWaitUntilFinished:
    async def test_returns_final_snapshot(self, connected, make_frame):
        client, connection = connected
        client.start_search("first")
        waiter = asyncio.create_task(client.wait_until_finished("s1", timeout=1.0))

        connection.feed(make_frame("search:complete", search_id="s1", totalPapers=0, uniquePapers=0, totalTimeMs=5))
        snapshot = await waiter
        assert snapshot.status is SessionStatus.COMPLETE

    async def test_timeout(self, connected):
        client, _ = connected
        client.start_search("first")
        with pytest.raises(asyncio.TimeoutError):
            await client.wait_until_finished(timeout=0.01)

    async def test_unknown_search(self, connected):
        client, _ = connected
        with pytest.raises(KeyError):
            await client.wait_until_finished("missing")


class TestConnectionLifecycle:
    async def test_connect_failure_raises(self, make_client, new_connector):
        client = make_client(new_connector())
        with pytest.raises(ConnectionLostError):
            await client.connect(timeout=1.0)
        assert client.connection_status is ConnectionStatus.ERROR

    async def test_context_manager(self, stream_config, recording_sleep, new_connection, new_connector):
        transport = StreamTransport(stream_config, connect=new_connector(new_connection()), sleep=recording_sleep)
        async with SearchStreamClient(transport, config=stream_config) as client:
            assert client.connection_status is ConnectionStatus.CONNECTED
        assert client.connection_status is ConnectionStatus.DISCONNECTED

    async def test_resubscribes_running_searches(self, make_client, new_connection, new_connector, make_event, eventually):
        first, second = new_connection(), new_connection()
        client = make_client(new_connector(first, second))
        await client.connect()
        client.start_search("running")
        client.start_search("finished")
        client.handle_event(
            make_event("search:complete", search_id="s2", totalPapers=0, uniquePapers=0, totalTimeMs=1)
        )
        await eventually(lambda: len(first.sent) == 2)

        first.drop()
        await eventually(lambda: second.sent)
        assert second.sent_events() == [{"event": "search:subscribe", "data": {"searchIds": ["s1"]}}]

    async def test_exhaustion_fails_open_searches(self, make_client, new_connection, new_connector, make_event):
        connection = new_connection()
        client = make_client(new_connector(connection))
        await client.connect()
        client.start_search("running")
        client.start_search("done")
        client.handle_event(make_event("search:error", search_id="s2", error="server", recoverable=False))

        connection.drop()
        snapshot = await client.wait_until_finished("s1", timeout=1.0)

        assert snapshot.status is SessionStatus.ERROR
        assert snapshot.error.code == CONNECTION_LOST_CODE
        assert snapshot.error.recoverable is True
        assert client.snapshot("s2").error.message == "server"


class TestSlowSourceSkip:
    async def test_pending_slow_sources_marked_after_grace(self, connected, make_event, eventually):
        client, _ = connected
        client.start_search("q", SearchOptions(sources=("openalex", "pubmed")))
        client.handle_event(make_event("search:started", search_id="s1", query="q"))
        client.handle_event(
            make_event(
                "search:progress",
                search_id="s1",
                stage="medium-sources",
                percent=40,
                sourcesComplete=1,
                sourcesTotal=2,
                papersFound=10,
            )
        )
        assert client.snapshot().source("pubmed").display_status is SourceStatus.PENDING

        await eventually(lambda: client.snapshot().source("pubmed").display_status is SourceStatus.SKIPPED)
        assert client.snapshot().source("pubmed").status is SourceStatus.PENDING
        assert client.snapshot().source("openalex").display_status is SourceStatus.PENDING

    async def test_no_skip_after_completion(self, connected, make_event):
        client, _ = connected
        client.start_search("q", SearchOptions(sources=("pubmed",)))
        client.handle_event(
            make_event(
                "search:progress",
                search_id="s1",
                stage="slow-sources",
                percent=60,
                sourcesComplete=0,
                sourcesTotal=1,
                papersFound=0,
            )
        )
        client.handle_event(
            make_event("search:complete", search_id="s1", totalPapers=0, uniquePapers=0, totalTimeMs=1)
        )
        await asyncio.sleep(0.1)
        assert client.snapshot().source("pubmed").display_status is SourceStatus.PENDING
