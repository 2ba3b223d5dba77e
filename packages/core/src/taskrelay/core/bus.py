"""EventBus -- 进程内事件总线

有界内存事件日志 + 订阅表，混合拉/推两种投递方式：
- 长轮询：每个等待中的 poll 持有一个 asyncio.Future，emit 匹配时同步 resolve
- webhook：emit 时为匹配的订阅创建后台推送任务，失败只记录日志，不重试

总线是显式持有的对象（进程启动时创建一次，按引用传递），不使用模块级全局状态；
事件日志与订阅表都只存在于本进程内存中，进程重启即清空。
"""

import asyncio
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from ulid import ULID

from .config import EVENT_LIST_DEFAULT_LIMIT, POLL_DEFAULT_TIMEOUT_MS, POLL_MAX_TIMEOUT_MS
from .models import (
    ErrorCode,
    Event,
    EventType,
    OperationResult,
    PollResult,
    SubscribeResult,
    Subscription,
    is_known_event_type,
)

log = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _is_webhook_url(url: str) -> bool:
    """仅接受带主机名的绝对 http(s) 地址"""
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)


class EventBus:
    """事件总线"""

    def __init__(
        self,
        retention: timedelta = timedelta(hours=1),
        max_events: int = 1000,
        webhook_timeout_s: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._retention = retention
        self._max_events = max_events
        self._webhook_timeout_s = webhook_timeout_s
        self._clock = clock or _utc_now

        # 未注入时首次推送再创建，由 aclose 关闭
        self._http_client = http_client
        self._owns_http_client = http_client is None

        self._seq = 0
        self._events: deque[Event] = deque()
        self._subscriptions: dict[str, Subscription] = {}
        # poll_id -> (subscription_id, future)
        self._waiters: dict[str, tuple[str, asyncio.Future]] = {}
        self._webhook_tasks: set[asyncio.Task] = set()
        self._closed = False

    # ---- 发布 ----

    async def emit(
        self,
        event_type: EventType | str,
        payload: dict[str, Any] | None = None,
    ) -> Event:
        """发出事件

        追加到日志 -> 裁剪 -> 同步唤醒匹配的长轮询 -> 后台推送 webhook。
        未知类型只记录 warning；该方法不抛异常。
        """
        event_type = str(event_type)
        if not is_known_event_type(event_type):
            log.warning("unknown_event_type", event_type=event_type)

        event = self._build_event(event_type, payload)
        self._events.append(event)
        self._prune(event.timestamp)

        try:
            self._notify_pollers(event)
            self._notify_webhooks(event)
        except Exception as e:
            log.error(
                "event_fanout_failed",
                event_id=event.id,
                event_type=event_type,
                error=str(e),
                exc_info=True,
            )

        log.debug("event_emitted", event_id=event.id, event_type=event_type, seq=event.seq)
        return event

    def _build_event(self, event_type: str, payload: Any) -> Event:
        """构造事件；非映射 payload 包装为 {"value": ...}，无法校验的 payload 置空"""
        if payload is None:
            data: dict[str, Any] = {}
        elif isinstance(payload, Mapping):
            data = dict(payload)
        else:
            log.warning(
                "event_payload_not_mapping",
                event_type=event_type,
                payload_type=type(payload).__name__,
            )
            data = {"value": payload}

        self._seq += 1
        fields = {
            "id": str(ULID()),
            "seq": self._seq,
            "type": event_type,
            "timestamp": self._clock(),
        }
        try:
            return Event(**fields, payload=data)
        except ValidationError as e:
            log.warning(
                "event_payload_invalid",
                event_type=event_type,
                error=str(e),
            )
            return Event(**fields, payload={})

    def _prune(self, now: datetime) -> None:
        """按保留窗口或条数上限裁剪（任一触发即裁剪）"""
        cutoff = now - self._retention
        while self._events and (
            len(self._events) > self._max_events or self._events[0].timestamp <= cutoff
        ):
            self._events.popleft()

    def _notify_pollers(self, event: Event) -> None:
        for poll_id, (subscription_id, future) in list(self._waiters.items()):
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None or not subscription.matches(event):
                continue
            if not future.done():
                future.set_result([event])
            del self._waiters[poll_id]

    def _notify_webhooks(self, event: Event) -> None:
        for subscription in self._subscriptions.values():
            if subscription.mode != "webhook" or not subscription.matches(event):
                continue
            task = asyncio.create_task(self._deliver(subscription, event))
            self._webhook_tasks.add(task)
            task.add_done_callback(self._webhook_tasks.discard)

    async def _deliver(self, subscription: Subscription, event: Event) -> None:
        """推送单个事件；成功推进订阅游标，失败记录日志"""
        client = self._get_http_client()
        try:
            body = event.model_dump(mode="json")
            response = await client.post(
                subscription.webhook_url,
                json=body,
                timeout=self._webhook_timeout_s,
            )
            response.raise_for_status()
        except (httpx.HTTPError, ValueError, TypeError) as e:
            # ValueError 覆盖 PydanticSerializationError（payload 无法序列化为 JSON）
            log.warning(
                "webhook_delivery_failed",
                subscription_id=subscription.id,
                webhook_url=subscription.webhook_url,
                event_id=event.id,
                event_type=event.type,
                error=str(e),
            )
            return

        subscription.advance(event)
        log.debug(
            "webhook_delivered",
            subscription_id=subscription.id,
            event_id=event.id,
            status_code=response.status_code,
        )

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._webhook_timeout_s)
        return self._http_client

    # ---- 订阅 ----

    def subscribe(
        self,
        event_types: Iterable[str],
        webhook_url: str | None = None,
        callback_id: str | None = None,
    ) -> SubscribeResult:
        """创建订阅

        不属于封闭集合的类型被过滤并在 ignored_types 中返回；
        没有任何合法类型，或 webhook_url 不是绝对 http(s) 地址时返回 INVALID_INPUT。
        """
        accepted: list[EventType] = []
        ignored: list[str] = []
        for event_type in event_types:
            if is_known_event_type(event_type):
                if EventType(event_type) not in accepted:
                    accepted.append(EventType(event_type))
            else:
                ignored.append(event_type)

        if not accepted:
            return SubscribeResult.failure(
                ErrorCode.INVALID_INPUT,
                "没有合法的事件类型",
                ignored_types=ignored,
            )
        if webhook_url is not None and not _is_webhook_url(webhook_url):
            return SubscribeResult.failure(
                ErrorCode.INVALID_INPUT,
                f"webhook_url 必须是绝对 http(s) 地址: {webhook_url!r}",
                ignored_types=ignored,
            )

        subscription = Subscription(
            id=str(ULID()),
            event_types=accepted,
            webhook_url=webhook_url,
            callback_id=callback_id,
            created_at=self._clock(),
        )
        self._subscriptions[subscription.id] = subscription
        log.info(
            "subscription_created",
            subscription_id=subscription.id,
            event_types=[t.value for t in accepted],
            mode=subscription.mode,
            callback_id=callback_id,
        )
        return SubscribeResult(
            success=True,
            subscription_id=subscription.id,
            event_types=accepted,
            ignored_types=ignored,
        )

    def unsubscribe(self, subscription_id: str) -> OperationResult:
        """删除订阅，并以空结果唤醒该订阅上所有等待中的 poll"""
        if self._subscriptions.pop(subscription_id, None) is None:
            return OperationResult.failure(
                ErrorCode.NOT_FOUND, f"订阅不存在: {subscription_id}"
            )

        for poll_id, (waiting_id, future) in list(self._waiters.items()):
            if waiting_id != subscription_id:
                continue
            if not future.done():
                future.set_result([])
            del self._waiters[poll_id]

        log.info("subscription_removed", subscription_id=subscription_id)
        return OperationResult(success=True)

    def get_subscription(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    def list_subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    # ---- 读取 ----

    def list_events(
        self,
        since: datetime | None = None,
        event_type: str | None = None,
        limit: int = EVENT_LIST_DEFAULT_LIMIT,
    ) -> list[Event]:
        """最近事件，新到旧

        Args:
            since: 只返回该时间之后（不含）的事件
            event_type: 按类型过滤
            limit: 最多返回条数
        """
        if since is not None and since.tzinfo is None:
            # 不带时区的时间按 UTC 解释
            since = since.replace(tzinfo=UTC)
        events = [
            e
            for e in reversed(self._events)
            if (since is None or e.timestamp > since)
            and (event_type is None or e.type == event_type)
        ]
        return events[: max(limit, 0)]

    async def poll(
        self,
        subscription_id: str,
        timeout_ms: int = POLL_DEFAULT_TIMEOUT_MS,
    ) -> PollResult:
        """长轮询

        游标之后已有匹配事件时立即返回并推进游标；否则挂起直到匹配事件到达、
        超时（返回空列表）或订阅被删除（返回空列表）。
        """
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return PollResult.failure(
                ErrorCode.NOT_FOUND,
                f"订阅不存在: {subscription_id}",
                subscription_id=subscription_id,
            )

        events = self._collect(subscription)
        if events:
            return PollResult(success=True, subscription_id=subscription_id, events=events)

        timeout_s = max(0, min(timeout_ms, POLL_MAX_TIMEOUT_MS)) / 1000
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s

        while (remaining := deadline - loop.time()) > 0:
            poll_id = str(ULID())
            future: asyncio.Future = loop.create_future()
            self._waiters[poll_id] = (subscription_id, future)
            try:
                delivered = await asyncio.wait_for(future, timeout=remaining)
            except TimeoutError:
                break
            finally:
                self._waiters.pop(poll_id, None)

            if self._closed or subscription_id not in self._subscriptions:
                break
            # 同一订阅上的并发 poll 可能已取走事件，此时继续等待
            events = self._collect(subscription, fallback=delivered)
            if events:
                return PollResult(
                    success=True, subscription_id=subscription_id, events=events
                )

        return PollResult(success=True, subscription_id=subscription_id, events=[])

    def _collect(
        self,
        subscription: Subscription,
        fallback: Iterable[Event] = (),
    ) -> list[Event]:
        """取出游标之后的匹配事件并推进游标

        事件可能在唤醒前已被裁剪出日志，此时使用唤醒时携带的事件。
        """
        events = [
            e
            for e in self._events
            if e.seq > subscription.last_seq and subscription.matches(e)
        ]
        if not events:
            events = [
                e
                for e in fallback
                if e.seq > subscription.last_seq and subscription.matches(e)
            ]
        if events:
            subscription.advance(events[-1])
        return events

    # ---- 生命周期 ----

    @property
    def pending_poll_count(self) -> int:
        return len(self._waiters)

    async def drain(self) -> None:
        """等待所有在途 webhook 推送结束"""
        if self._webhook_tasks:
            await asyncio.gather(*self._webhook_tasks, return_exceptions=True)

    async def aclose(self) -> None:
        """取消在途推送，唤醒所有等待中的 poll，关闭自建的 HTTP 客户端"""
        self._closed = True
        for task in list(self._webhook_tasks):
            task.cancel()
        await self.drain()

        for _, future in self._waiters.values():
            if not future.done():
                future.set_result([])
        self._waiters.clear()

        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
