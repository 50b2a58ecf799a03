import json
from datetime import datetime, timezone

import pytest

from libs.ws_hub import ConnectionHub

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_send_to_encodes_frame(hub, connection_factory):
    conn = connection_factory()
    await hub.connect(conn, "c1")

    sent = await hub.send_to("c1", "ping", {"at": datetime(2025, 1, 1, tzinfo=timezone.utc)})

    assert sent is True
    assert conn.frames == [{"event": "ping", "data": {"at": "2025-01-01T00:00:00+00:00"}}]


@pytest.mark.asyncio
async def test_send_to_unknown_connection_is_noop(hub):
    assert await hub.send_to("ghost", "ping", {}) is False


@pytest.mark.asyncio
async def test_broadcast_skips_failed_connections(hub, connection_factory):
    good, broken = connection_factory(), connection_factory(fail=True)
    await hub.connect(good, "good")
    await hub.connect(broken, "broken")

    delivered = await hub.broadcast("news", {"n": 1})

    assert delivered == 1
    assert good.payloads("news") == [{"n": 1}]


@pytest.mark.asyncio
async def test_broadcast_with_no_clients(hub):
    assert await hub.broadcast("news", {}) == 0


@pytest.mark.asyncio
async def test_dispatch_routes_to_handler(hub, connection_factory):
    calls = []

    async def handler(client_id, payload):
        calls.append((client_id, payload))

    hub.on("do-thing", handler)
    await hub.connect(connection_factory(), "c1")
    await hub.dispatch("c1", "do-thing", {"x": 1})

    assert calls == [("c1", {"x": 1})]


@pytest.mark.asyncio
async def test_unknown_event_replies_error(hub, connection_factory):
    conn = connection_factory()
    await hub.connect(conn, "c1")

    await hub.dispatch("c1", "nope", None)

    assert conn.payloads("error") == [{"message": "Unknown event: nope"}]


@pytest.mark.asyncio
async def test_handler_crash_replies_error_and_keeps_connection(hub, connection_factory):
    async def handler(client_id, payload):
        raise RuntimeError("boom")

    hub.on("explode", handler)
    conn = connection_factory()
    await hub.connect(conn, "c1")

    await hub.dispatch("c1", "explode", {})

    assert conn.payloads("error") == [{"message": "Internal error"}]
    assert hub.is_connected("c1")


@pytest.mark.asyncio
async def test_dispatch_text_rejects_malformed_frames(hub, connection_factory):
    conn = connection_factory()
    await hub.connect(conn, "c1")

    await hub.dispatch_text("c1", "not json")
    await hub.dispatch_text("c1", json.dumps(["a", "list"]))
    await hub.dispatch_text("c1", json.dumps({"data": 1}))

    assert conn.payloads("error") == [{"message": "Malformed frame"}] * 3


@pytest.mark.asyncio
async def test_dispatch_text_accepts_utf8_bytes(hub, connection_factory):
    conn = connection_factory()
    await hub.connect(conn, "c1")
    seen = []

    async def handler(client_id, payload):
        seen.append((client_id, payload))

    hub.on("ping", handler)

    await hub.dispatch_text("c1", b'{"event": "ping", "data": 1}')
    await hub.dispatch_text("c1", b"\xff")
    await hub.dispatch_text("c1", None)

    assert seen == [("c1", 1)]
    assert conn.payloads("error") == [{"message": "Malformed frame"}] * 2


@pytest.mark.asyncio
async def test_disconnect_runs_sync_and_async_handlers(hub, connection_factory):
    seen = []

    async def async_handler(client_id):
        seen.append(("async", client_id))

    hub.on_disconnect(lambda client_id: seen.append(("sync", client_id)))
    hub.on_disconnect(async_handler)
    await hub.connect(connection_factory(), "c1")

    await hub.disconnect("c1")
    await hub.disconnect("c1")

    assert seen == [("sync", "c1"), ("async", "c1")]
    assert hub.connection_ids() == []


@pytest.mark.asyncio
async def test_event_counter_labels_known_and_unknown(mocker, connection_factory):
    counter = mocker.MagicMock()
    hub = ConnectionHub(event_counter=counter)

    async def handler(client_id, payload):
        return None

    hub.on("known", handler)
    await hub.connect(connection_factory(), "c1")
    await hub.dispatch("c1", "known")
    await hub.dispatch("c1", "mystery")

    counter.labels.assert_any_call(event="known")
    counter.labels.assert_any_call(event="unknown")
