"""
Tests for hookgate/utils/alerting.py and hookgate/utils/instrumentation.py.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from hookgate.utils import alerting, instrumentation
from hookgate.utils.alerting import AlertType, send_alert


@pytest.fixture(autouse=True)
def _clear_local_cooldowns():
    alerting._local_cooldowns.clear()
    yield
    alerting._local_cooldowns.clear()


class TestSendAlert:
    async def test_sent_when_cooldown_acquired(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=True)
        assert await send_alert(AlertType.HANDLER_NOT_REGISTERED, "missing") is True
        key = mock_redis.set.call_args.args[0]
        assert key == "hookgate:alert_cooldown:handler_not_registered"
        assert mock_redis.set.call_args.kwargs == {"nx": True, "ex": 900}

    async def test_suppressed_during_cooldown(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=None)
        assert await send_alert(AlertType.ACTION_EXHAUSTED, "boom") is False

    async def test_dedup_key_scopes_cooldown(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=True)
        await send_alert(AlertType.CIRCUIT_OPENED, "open", dedup_key="https://a.example.com")
        assert mock_redis.set.call_args.args[0] == \
            "hookgate:alert_cooldown:circuit_opened:https://a.example.com"

    async def test_in_memory_fallback_when_redis_down(self):
        with patch("hookgate.utils.alerting.get_redis", AsyncMock(side_effect=ConnectionError("down"))):
            assert await send_alert(AlertType.WORKER_ERROR, "first") is True
            assert await send_alert(AlertType.WORKER_ERROR, "second") is False

    async def test_posts_to_webhook_when_configured(self, settings):
        settings.alert_webhook_url = "https://alerts.example.com/hook"
        client = MagicMock()
        client.post = AsyncMock()
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=False)
        with patch("hookgate.utils.alerting.get_settings", return_value=settings), \
                patch("hookgate.utils.alerting.httpx.AsyncClient", return_value=client):
            await send_alert(AlertType.DELIVERY_EXHAUSTED, "gave up", extra={"id": "1"})
        url = client.post.call_args.args[0]
        content = client.post.call_args.kwargs["json"]["content"]
        assert url == "https://alerts.example.com/hook"
        assert "delivery_exhausted" in content
        assert "`id: 1`" in content

    async def test_webhook_failure_is_swallowed(self, settings):
        settings.alert_webhook_url = "https://alerts.example.com/hook"
        with patch("hookgate.utils.alerting.get_settings", return_value=settings), \
                patch("hookgate.utils.alerting.httpx.AsyncClient", side_effect=RuntimeError("no network")):
            assert await send_alert(AlertType.DELIVERY_EXHAUSTED, "gave up") is True


class TestInstrumentation:
    def test_subscribers_receive_events(self):
        received = []
        callback = instrumentation.subscribe(lambda name, fields: received.append((name, fields)))
        try:
            instrumentation.emit(instrumentation.ACTION_COMPLETED, action_id="a1", attempt=2)
        finally:
            instrumentation.unsubscribe(callback)
        assert received == [("action.completed", {"action_id": "a1", "attempt": 2})]

    def test_unsubscribed_callback_not_called(self):
        received = []
        callback = instrumentation.subscribe(lambda name, fields: received.append(name))
        instrumentation.unsubscribe(callback)
        instrumentation.emit(instrumentation.ACTION_STARTED, action_id="a1")
        assert received == []

    def test_failing_subscriber_does_not_propagate(self):
        def boom(name, fields):
            raise RuntimeError("subscriber bug")

        instrumentation.subscribe(boom)
        try:
            instrumentation.emit(instrumentation.CIRCUIT_OPENED, endpoint="https://x.example.com")
        finally:
            instrumentation.unsubscribe(boom)

    def test_fields_named_like_log_record_attributes(self, caplog):
        received = []
        callback = instrumentation.subscribe(lambda name, fields: received.append(fields))
        fields = {
            "created": 1, "filename": "a.json", "lineno": 3, "process": "billing",
            "thread": "t1", "module": "invoices", "exc_info": None, "action_id": "a1",
        }
        try:
            with caplog.at_level("INFO", logger="hookgate.utils.instrumentation"):
                instrumentation.emit(instrumentation.ACTION_STARTED, **fields)
        finally:
            instrumentation.unsubscribe(callback)

        assert received == [fields]
        [record] = [r for r in caplog.records if getattr(r, "instrument", None) == "action.started"]
        assert record.action_id == "a1"
        assert "filename=a.json" in record.getMessage()
