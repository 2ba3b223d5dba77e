"""EventBus 单元测试

测试内容：
1. emit：序号、裁剪、未知类型
2. subscribe / unsubscribe 校验
3. 长轮询：立即返回、挂起唤醒、超时、游标只前进
4. webhook 推送（httpx.MockTransport）
5. 总线实例相互隔离
"""

import asyncio
import json
from datetime import datetime, timedelta

import httpx
import pytest
from taskrelay.core.bus import EventBus
from taskrelay.core.config import POLL_MAX_TIMEOUT_MS
from taskrelay.core.models import ErrorCode, EventType


class TestEmit:
    """emit 测试"""

    async def test_emit_assigns_increasing_seq(self, event_bus):
        first = await event_bus.emit(EventType.JOB_CREATED, {"id": 1})
        second = await event_bus.emit("job.updated", {"id": 1})
        assert first.seq < second.seq
        assert first.id != second.id
        assert first.type == "job.created"
        assert second.payload == {"id": 1}

    async def test_unknown_type_is_emitted(self, event_bus):
        event = await event_bus.emit("job.archived", {"id": 1})
        assert event.type == "job.archived"
        assert event_bus.list_events()[0].id == event.id

    async def test_non_mapping_payload_is_wrapped(self, event_bus):
        event = await event_bus.emit(EventType.TASK_CREATED, ["not", "a", "mapping"])
        assert event.payload == {"value": ["not", "a", "mapping"]}
        assert event_bus.list_events()[0].id == event.id

    async def test_invalid_payload_keys_emit_empty_payload(self, event_bus):
        event = await event_bus.emit(EventType.JOB_UPDATED, {1: "x"})
        assert event.payload == {}
        assert event.seq == 1

    async def test_prune_by_count(self, clock):
        bus = EventBus(max_events=3, clock=clock)
        for i in range(5):
            await bus.emit(EventType.JOB_UPDATED, {"i": i})
        assert [e.payload["i"] for e in bus.list_events()] == [4, 3, 2]
        await bus.aclose()

    async def test_prune_by_age(self, clock):
        bus = EventBus(retention=timedelta(minutes=10), clock=clock)
        await bus.emit(EventType.JOB_CREATED, {"i": 0})
        clock.advance(minutes=11)
        await bus.emit(EventType.JOB_CREATED, {"i": 1})
        assert [e.payload["i"] for e in bus.list_events()] == [1]
        await bus.aclose()


class TestListEvents:
    """list_events 测试"""

    async def test_newest_first_with_filters(self, event_bus, clock):
        await event_bus.emit(EventType.JOB_CREATED, {"i": 0})
        since = clock.now
        clock.advance(seconds=1)
        await event_bus.emit(EventType.TASK_CREATED, {"i": 1})
        clock.advance(seconds=1)
        await event_bus.emit(EventType.JOB_CREATED, {"i": 2})

        assert [e.payload["i"] for e in event_bus.list_events()] == [2, 1, 0]
        assert [e.payload["i"] for e in event_bus.list_events(since=since)] == [2, 1]
        assert [
            e.payload["i"] for e in event_bus.list_events(event_type="job.created")
        ] == [2, 0]
        assert len(event_bus.list_events(limit=1)) == 1

    async def test_naive_since_treated_as_utc(self, event_bus, clock):
        await event_bus.emit(EventType.JOB_CREATED, {"i": 0})
        naive_now = clock.now.replace(tzinfo=None)

        assert len(event_bus.list_events(since=naive_now - timedelta(seconds=1))) == 1
        assert event_bus.list_events(since=naive_now) == []
        assert len(event_bus.list_events(since=datetime(2024, 1, 1))) == 1


class TestSubscribe:
    """subscribe / unsubscribe 测试"""

    def test_subscribe_filters_unknown_types(self, event_bus):
        result = event_bus.subscribe(["task.created", "task.exploded", "task.created"])
        assert result.success
        assert result.event_types == [EventType.TASK_CREATED]
        assert result.ignored_types == ["task.exploded"]
        assert event_bus.get_subscription(result.subscription_id) is not None

    def test_subscribe_no_valid_types(self, event_bus):
        result = event_bus.subscribe(["nope", "also.nope"])
        assert result.success is False
        assert result.error == ErrorCode.INVALID_INPUT
        assert event_bus.list_subscriptions() == []

    @pytest.mark.parametrize(
        "url",
        ["not a url", "/relative/path", "ftp://hooks.local/in", "http://"],
    )
    def test_subscribe_invalid_webhook(self, event_bus, url):
        result = event_bus.subscribe(["task.created"], webhook_url=url)
        assert result.error == ErrorCode.INVALID_INPUT

    def test_unsubscribe_unknown(self, event_bus):
        result = event_bus.unsubscribe("missing")
        assert result.error == ErrorCode.NOT_FOUND

    def test_unsubscribe(self, event_bus):
        sub_id = event_bus.subscribe(["task.created"]).subscription_id
        assert event_bus.unsubscribe(sub_id).success
        assert event_bus.get_subscription(sub_id) is None


class TestPoll:
    """长轮询测试"""

    async def test_poll_unknown_subscription(self, event_bus):
        result = await event_bus.poll("missing", timeout_ms=0)
        assert result.success is False
        assert result.error == ErrorCode.NOT_FOUND

    async def test_first_poll_catches_up_retained_events(self, event_bus):
        await event_bus.emit(EventType.TASK_CREATED, {"i": 0})
        sub_id = event_bus.subscribe(["task.created"]).subscription_id

        result = await event_bus.poll(sub_id, timeout_ms=0)
        assert [e.payload["i"] for e in result.events] == [0]

    async def test_poll_delivers_once_per_cursor(self, event_bus):
        sub_id = event_bus.subscribe(["task.created"]).subscription_id
        e1 = await event_bus.emit(EventType.TASK_CREATED, {"i": 1})
        await event_bus.emit(EventType.JOB_CREATED, {"i": 2})

        result = await event_bus.poll(sub_id, timeout_ms=0)
        assert [e.id for e in result.events] == [e1.id]
        assert event_bus.get_subscription(sub_id).last_event_id == e1.id

        again = await event_bus.poll(sub_id, timeout_ms=50)
        assert again.success
        assert again.events == []

    async def test_non_matching_emit_times_out(self, event_bus):
        sub_id = event_bus.subscribe(["task.created"]).subscription_id
        await event_bus.emit(EventType.JOB_CREATED, {})

        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await event_bus.poll(sub_id, timeout_ms=200)
        elapsed = loop.time() - started

        assert result.success
        assert result.events == []
        assert elapsed >= 0.15
        assert event_bus.pending_poll_count == 0

    async def test_waiting_poll_resolved_by_emit(self, event_bus):
        sub_id = event_bus.subscribe(["task.created"]).subscription_id
        poll_task = asyncio.create_task(event_bus.poll(sub_id, timeout_ms=5000))
        await asyncio.sleep(0.01)
        assert event_bus.pending_poll_count == 1

        await event_bus.emit(EventType.JOB_CREATED, {})
        await asyncio.sleep(0.01)
        assert not poll_task.done()

        event = await event_bus.emit(EventType.TASK_CREATED, {"name": "research-acme.json"})
        result = await asyncio.wait_for(poll_task, timeout=1)
        assert [e.id for e in result.events] == [event.id]
        assert event_bus.pending_poll_count == 0

    async def test_unsubscribe_wakes_waiting_poll(self, event_bus):
        sub_id = event_bus.subscribe(["task.created"]).subscription_id
        poll_task = asyncio.create_task(event_bus.poll(sub_id, timeout_ms=5000))
        await asyncio.sleep(0.01)

        event_bus.unsubscribe(sub_id)
        result = await asyncio.wait_for(poll_task, timeout=1)
        assert result.success
        assert result.events == []
        assert event_bus.pending_poll_count == 0

    async def test_cancelled_poll_leaves_no_waiter(self, event_bus):
        sub_id = event_bus.subscribe(["task.created"]).subscription_id
        poll_task = asyncio.create_task(event_bus.poll(sub_id, timeout_ms=5000))
        await asyncio.sleep(0.01)

        poll_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await poll_task
        assert event_bus.pending_poll_count == 0

    async def test_event_pruned_before_wake_still_delivered(self, clock):
        bus = EventBus(max_events=1, clock=clock)
        sub_id = bus.subscribe(["task.created"]).subscription_id
        poll_task = asyncio.create_task(bus.poll(sub_id, timeout_ms=5000))
        await asyncio.sleep(0.01)

        event = await bus.emit(EventType.TASK_CREATED, {"i": 0})
        await bus.emit(EventType.JOB_CREATED, {"i": 1})

        result = await asyncio.wait_for(poll_task, timeout=1)
        assert [e.id for e in result.events] == [event.id]
        await bus.aclose()

    async def test_timeout_is_clamped(self, event_bus):
        sub_id = event_bus.subscribe(["task.created"]).subscription_id
        await event_bus.emit(EventType.TASK_CREATED, {})
        result = await event_bus.poll(sub_id, timeout_ms=POLL_MAX_TIMEOUT_MS * 10)
        assert len(result.events) == 1

        negative = await event_bus.poll(sub_id, timeout_ms=-5)
        assert negative.events == []

    async def test_buses_are_isolated(self, clock):
        bus_a = EventBus(clock=clock)
        bus_b = EventBus(clock=clock)
        sub_id = bus_b.subscribe(["task.created"]).subscription_id

        await bus_a.emit(EventType.TASK_CREATED, {})
        assert bus_b.list_events() == []
        assert (await bus_b.poll(sub_id, timeout_ms=0)).events == []
        assert (await bus_a.poll(sub_id, timeout_ms=0)).error == ErrorCode.NOT_FOUND

        await bus_a.aclose()
        await bus_b.aclose()


class TestWebhook:
    """webhook 推送测试"""

    async def test_webhook_receives_matching_events(self, clock):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append((str(request.url), json.loads(request.content)))
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        bus = EventBus(http_client=client, clock=clock)
        sub_id = bus.subscribe(
            ["task.completed"], webhook_url="http://hooks.local/in"
        ).subscription_id

        await bus.emit(EventType.TASK_CREATED, {"name": "a"})
        event = await bus.emit(EventType.TASK_COMPLETED, {"name": "a"})
        await bus.drain()

        assert len(received) == 1
        url, body = received[0]
        assert url == "http://hooks.local/in"
        assert body["id"] == event.id
        assert body["type"] == "task.completed"
        assert body["payload"] == {"name": "a"}
        assert bus.get_subscription(sub_id).last_event_id == event.id

        await bus.aclose()
        await client.aclose()

    async def test_webhook_failure_does_not_break_emit(self, clock):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "down.local":
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(500)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        bus = EventBus(http_client=client, clock=clock)
        down = bus.subscribe(["task.created"], webhook_url="http://down.local/hook")
        broken = bus.subscribe(["task.created"], webhook_url="https://broken.local/hook")

        event = await bus.emit(EventType.TASK_CREATED, {})
        await bus.drain()

        assert event.seq == 1
        assert bus.get_subscription(down.subscription_id).last_event_id is None
        assert bus.get_subscription(broken.subscription_id).last_event_id is None

        await bus.aclose()
        await client.aclose()

    async def test_unserializable_payload_fails_delivery_quietly(self, clock):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        bus = EventBus(http_client=client, clock=clock)
        sub_id = bus.subscribe(
            ["job.created"], webhook_url="http://hooks.local/in"
        ).subscription_id

        await bus.emit(EventType.JOB_CREATED, {"obj": object()})
        deliveries = list(bus._webhook_tasks)
        await bus.drain()

        assert received == []
        assert [task.exception() for task in deliveries] == [None]
        assert bus.get_subscription(sub_id).last_event_id is None

        await bus.aclose()
        await client.aclose()

    async def test_aclose_resolves_waiting_polls(self, clock):
        bus = EventBus(clock=clock)
        sub_id = bus.subscribe(["task.created"]).subscription_id
        poll_task = asyncio.create_task(bus.poll(sub_id, timeout_ms=5000))
        await asyncio.sleep(0.01)

        await bus.aclose()
        result = await asyncio.wait_for(poll_task, timeout=1)
        assert result.events == []
