"""
NotificationBroadcaster 与实时通知运行时测试
"""

import asyncio
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from canteen.realtime.broadcaster import (
    NotificationBroadcaster,
    UnknownTopic,
    UnknownChangeType,
    TOPIC_ORDERS,
    TOPIC_POINTS,
    EVENT_NEW_ORDER,
    EVENT_NEW_POINTS,
    EVENT_ORDER_UPDATED,
)
from canteen.core.config import settings
from canteen.models.payment import PaymentRequest
from canteen.realtime.hub import init_realtime, get_hub, shutdown_realtime, notify, dispatch, drain_dispatches
from canteen.services.payment_service import PaymentService


class FakeConnection:
    """记录收到消息的连接"""

    def __init__(self, fail: bool = False):
        self.messages = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise ConnectionError("socket closed")
        self.messages.append(message)


class StalledConnection:
    """不再读取数据的连接，发送永远不返回"""

    async def send_json(self, message):
        await asyncio.Event().wait()


@pytest.fixture
def broadcaster():
    return NotificationBroadcaster()


@pytest_asyncio.fixture
async def clean_hub():
    await shutdown_realtime()
    yield
    await shutdown_realtime()


@pytest.mark.asyncio
class TestNotificationBroadcaster:
    """广播器测试类"""

    async def test_publish_reaches_only_topic_subscribers(self, broadcaster):
        orders_client, points_client = FakeConnection(), FakeConnection()
        orders_id = broadcaster.on_connect(orders_client)
        points_id = broadcaster.on_connect(points_client)
        broadcaster.subscribe(orders_id, TOPIC_ORDERS)
        broadcaster.subscribe(points_id, TOPIC_POINTS)

        delivered = await broadcaster.publish(TOPIC_ORDERS, EVENT_NEW_ORDER, {"orderId": "011012410280004"})

        assert delivered == 1
        assert points_client.messages == []
        message = orders_client.messages[0]
        assert message["event"] == EVENT_NEW_ORDER
        assert message["payload"] == {"orderId": "011012410280004"}
        assert "T" in message["timestamp"]

    async def test_subscribe_is_idempotent(self, broadcaster):
        client = FakeConnection()
        connection_id = broadcaster.on_connect(client)

        assert broadcaster.subscribe(connection_id, TOPIC_ORDERS) is True
        assert broadcaster.subscribe(connection_id, TOPIC_ORDERS) is True
        assert broadcaster.subscriber_count(TOPIC_ORDERS) == 1

        await broadcaster.publish(TOPIC_ORDERS, EVENT_NEW_ORDER, {})
        assert len(client.messages) == 1

    async def test_unknown_topic(self, broadcaster):
        connection_id = broadcaster.on_connect(FakeConnection())
        with pytest.raises(UnknownTopic):
            broadcaster.subscribe(connection_id, "refunds")
        with pytest.raises(UnknownTopic):
            await broadcaster.publish("refunds", EVENT_NEW_ORDER, {})

    async def test_subscribe_unknown_connection(self, broadcaster):
        assert broadcaster.subscribe("missing", TOPIC_ORDERS) is False

    async def test_publish_without_subscribers(self, broadcaster):
        assert await broadcaster.publish(TOPIC_POINTS, EVENT_NEW_POINTS, {}) == 0

    async def test_disconnect_removes_all_subscriptions(self, broadcaster):
        client = FakeConnection()
        connection_id = broadcaster.on_connect(client)
        broadcaster.subscribe(connection_id, TOPIC_ORDERS)
        broadcaster.subscribe(connection_id, TOPIC_POINTS)

        broadcaster.on_disconnect(connection_id)

        assert not broadcaster.is_connected(connection_id)
        assert broadcaster.subscriber_count(TOPIC_ORDERS) == 0
        assert broadcaster.subscriber_count(TOPIC_POINTS) == 0
        assert await broadcaster.publish(TOPIC_ORDERS, EVENT_NEW_ORDER, {}) == 0

    async def test_failed_connection_is_dropped(self, broadcaster):
        """发送失败的连接被移除，不影响其他连接"""
        good, bad = FakeConnection(), FakeConnection(fail=True)
        good_id = broadcaster.on_connect(good)
        bad_id = broadcaster.on_connect(bad)
        broadcaster.subscribe(good_id, TOPIC_ORDERS)
        broadcaster.subscribe(bad_id, TOPIC_ORDERS)

        delivered = await broadcaster.publish(TOPIC_ORDERS, EVENT_NEW_ORDER, {"n": 1})

        assert delivered == 1
        assert len(good.messages) == 1
        assert not broadcaster.is_connected(bad_id)
        assert broadcaster.subscriber_count(TOPIC_ORDERS) == 1

    async def test_stalled_connection_is_dropped(self):
        """发送超时的连接被移除，推送照常返回"""
        broadcaster = NotificationBroadcaster(send_timeout=0.05)
        good = FakeConnection()
        good_id = broadcaster.on_connect(good)
        stalled_id = broadcaster.on_connect(StalledConnection())
        broadcaster.subscribe(good_id, TOPIC_ORDERS)
        broadcaster.subscribe(stalled_id, TOPIC_ORDERS)

        delivered = await asyncio.wait_for(broadcaster.publish(TOPIC_ORDERS, EVENT_NEW_ORDER, {}), timeout=2)

        assert delivered == 1
        assert len(good.messages) == 1
        assert not broadcaster.is_connected(stalled_id)

    async def test_send_timeout_defaults_to_settings(self, broadcaster):
        assert broadcaster.send_timeout == settings.socket_send_timeout_seconds

    @pytest.mark.parametrize("change_type, topic, event", [
        ("new_order", TOPIC_ORDERS, EVENT_NEW_ORDER),
        ("new_points", TOPIC_POINTS, EVENT_NEW_POINTS),
        ("order_updated", TOPIC_ORDERS, EVENT_ORDER_UPDATED),
    ])
    async def test_announce_routes_by_change_type(self, broadcaster, change_type, topic, event):
        client = FakeConnection()
        broadcaster.subscribe(broadcaster.on_connect(client), topic)

        assert await broadcaster.announce(change_type, {"k": "v"}) == 1
        assert client.messages[0]["event"] == event

    async def test_announce_unknown_type(self, broadcaster):
        with pytest.raises(UnknownChangeType, match="Unknown type 'refund'"):
            await broadcaster.announce("refund", {})
        with pytest.raises(UnknownChangeType):
            await broadcaster.announce(["new_order"], {})


@pytest.mark.asyncio
class TestRealtimeRuntime:
    """实时通知运行时测试类"""

    async def test_init_is_idempotent(self, clean_hub):
        first = init_realtime(start_pollers=False)
        second = init_realtime(start_pollers=False)

        assert first is second
        assert get_hub() is first
        assert [poller.name for poller in first.pollers] == ["orders", "points"]
        assert not any(poller.running for poller in first.pollers)

    async def test_pollers_start_and_stop(self, clean_hub, seeded_session_maker):
        hub = init_realtime(session_maker=seeded_session_maker, interval=60, start_pollers=True)
        assert all(poller.running for poller in hub.pollers)

        await shutdown_realtime()

        assert get_hub() is None
        assert not any(poller.running for poller in hub.pollers)

    async def test_notify_without_hub(self, clean_hub):
        assert await notify(TOPIC_ORDERS, EVENT_ORDER_UPDATED, {}) == 0

    async def test_notify_through_hub(self, clean_hub):
        hub = init_realtime(start_pollers=False)
        client = FakeConnection()
        hub.broadcaster.subscribe(hub.broadcaster.on_connect(client), TOPIC_ORDERS)

        assert await notify(TOPIC_ORDERS, EVENT_ORDER_UPDATED, {"orderId": "X"}) == 1
        assert client.messages[0]["event"] == EVENT_ORDER_UPDATED

    async def test_poller_change_is_published(self, clean_hub):
        hub = init_realtime(start_pollers=False)
        client = FakeConnection()
        hub.broadcaster.subscribe(hub.broadcaster.on_connect(client), TOPIC_POINTS)
        points_poller = hub.pollers[1]
        points_poller.fetch_latest = AsyncMock(side_effect=[(1, {"recordId": "1"}), (2, {"recordId": "2"})])

        await points_poller.tick()
        await points_poller.tick()

        assert [m["event"] for m in client.messages] == [EVENT_NEW_POINTS]
        assert client.messages[0]["payload"] == {"recordId": "2"}
    async def test_pollers_use_tick_timeout(self, clean_hub):
        hub = init_realtime(start_pollers=False)

        assert [poller.tick_timeout for poller in hub.pollers] == [settings.poll_tick_timeout_seconds] * 2

    async def test_dispatch_runs_in_background(self, clean_hub):
        assert await dispatch(TOPIC_ORDERS, EVENT_ORDER_UPDATED, {}) == 0

        hub = init_realtime(start_pollers=False)
        client = FakeConnection()
        hub.broadcaster.subscribe(hub.broadcaster.on_connect(client), TOPIC_ORDERS)

        await dispatch(TOPIC_ORDERS, EVENT_ORDER_UPDATED, {"orderId": "X"})
        await drain_dispatches()

        assert client.messages[0]["payload"] == {"orderId": "X"}

    async def test_stalled_dashboard_does_not_block_payment(self, clean_hub, seeded_session_maker,
                                                            create_db_order, mock_cache):
        """仪表盘连接卡住时支付仍然及时返回"""
        await create_db_order("011012410280001")
        hub = init_realtime(start_pollers=False)
        hub.broadcaster.send_timeout = 0.05
        stalled_id = hub.broadcaster.on_connect(StalledConnection())
        hub.broadcaster.subscribe(stalled_id, TOPIC_ORDERS)
        service = PaymentService(session_maker=seeded_session_maker, cache=mock_cache)

        result = await asyncio.wait_for(
            service.pay_order(PaymentRequest(order_id="011012410280001", student_id="2022001")),
            timeout=2
        )
        await asyncio.wait_for(drain_dispatches(), timeout=2)

        assert result.new_points == 22
        assert not hub.broadcaster.is_connected(stalled_id)
