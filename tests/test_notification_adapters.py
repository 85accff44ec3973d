import json

import httpx
import pytest

from domain.order.exceptions import NotificationFailure
from infrastructure.adapters.notifier import OrderNotifier
from infrastructure.tasks.tasks import notifications as email_tasks
from infrastructure.tasks.tasks.notifications import EmailDeliveryError, send_order_email


class FakeTasks:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def enqueue_order_email(self, to, subject, html_body, text_body, *, idempotency_key=None):
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "idempotency_key": idempotency_key})


class BrokenSession:
    async def __aenter__(self):
        raise RuntimeError("database unavailable")

    async def __aexit__(self, *exc):
        return False


@pytest.mark.asyncio
async def test_email_is_enqueued_with_idempotency_key():
    tasks = FakeTasks()
    notifier = OrderNotifier(tasks=tasks)

    await notifier.email("buyer@example.com", "Order Cancelled", "<p>x</p>", "x", idempotency_key="abc")

    assert tasks.sent == [{"to": "buyer@example.com", "subject": "Order Cancelled", "idempotency_key": "abc"}]


@pytest.mark.asyncio
async def test_enqueue_failure_becomes_notification_failure():
    notifier = OrderNotifier(tasks=FakeTasks(error=ConnectionError("broker down")))

    with pytest.raises(NotificationFailure) as exc_info:
        await notifier.email("buyer@example.com", "Order Cancelled", "<p>x</p>", "x")
    assert exc_info.value.channel == "email"


@pytest.mark.asyncio
async def test_in_app_failure_becomes_notification_failure():
    notifier = OrderNotifier(session_factory=BrokenSession, tasks=FakeTasks())

    with pytest.raises(NotificationFailure) as exc_info:
        await notifier.notify("buyer_1", "Order Cancelled", "Cancelled", "order_cancelled", order_id="ord_1")
    assert exc_info.value.channel == "in_app"


@pytest.fixture
def email_service(monkeypatch):
    """Point the email task at an httpx.MockTransport."""
    calls = []
    responses = []

    def handler(request):
        calls.append(request)
        return responses.pop(0) if responses else httpx.Response(202, json={"id": "em_1"})

    real_client = httpx.Client

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    cfg = email_tasks.integration_settings.notifications
    monkeypatch.setattr(cfg, "email_service_url", "https://mail.test/send")
    monkeypatch.setattr(cfg, "email_api_key", "mk_test")
    monkeypatch.setattr(email_tasks.httpx, "Client", client_factory)
    return calls, responses


def test_email_task_posts_message(email_service):
    calls, _ = email_service

    sent = send_order_email("buyer@example.com", "Order Cancelled", "<p>x</p>", "x", idempotency_key="key_1")

    assert sent is True
    [request] = calls
    assert request.headers["Idempotency-Key"] == "key_1"
    assert request.headers["Authorization"] == "Bearer mk_test"
    assert json.loads(request.content)["to"] == "buyer@example.com"


def test_email_task_raises_on_transient_status(email_service):
    _, responses = email_service
    responses.append(httpx.Response(503))

    with pytest.raises(EmailDeliveryError):
        send_order_email("buyer@example.com", "Order Cancelled", "<p>x</p>", "x")


def test_email_task_drops_permanent_rejection(email_service):
    _, responses = email_service
    responses.append(httpx.Response(422, json={"error": "invalid address"}))

    assert send_order_email("not-an-address", "Order Cancelled", "<p>x</p>", "x") is False
