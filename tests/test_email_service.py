from types import SimpleNamespace

import pytest

from portal.config import settings
from portal.schemas.records import Booking, BookingStatus
from portal.services import email_service as email_module
from portal.services.email_service import EmailService, notify_new_booking_requests
from tests.factories import NOW


class FakeBrevo:
    def __init__(self):
        self.sent = []

    def send_transac_email(self, email):
        self.sent.append(email)
        return SimpleNamespace(message_id="msg-1")


@pytest.fixture
def brevo():
    service = EmailService()
    service.client = FakeBrevo()
    service.is_configured = True
    return service


def pending(booking_id="b1", **fields):
    return Booking(id=booking_id, status=BookingStatus.PENDING, date=NOW, amount=150000, **fields)


def test_booking_request_email_goes_to_the_consultant_only(brevo):
    sent = brevo.send_new_booking_requests_email(
        "maria@clinic.test",
        "Dr. Maria Santos",
        [pending(full_name="Ana <Reyes>", hour="9:00 AM to 10:00 AM")]
    )

    assert sent is True
    message = brevo.client.sent[0]
    assert [recipient.email for recipient in message.to] == ["maria@clinic.test"]
    assert message.cc is None and message.bcc is None
    assert message.reply_to.email == settings.EMAIL_REPLY_TO
    assert message.subject.startswith("1 new appointment request ")
    assert "Ana &lt;Reyes&gt;" in message.html_content
    assert "Ana <Reyes>" in message.text_content


def test_unconfigured_service_does_not_send():
    service = EmailService()
    service.client = None
    service.is_configured = False

    assert service.send_email("maria@clinic.test", "Hello", "<p>Hi</p>") is False


async def test_notify_runs_send_in_worker_thread(brevo, monkeypatch):
    monkeypatch.setattr(email_module, "email_service", brevo)

    sent = await notify_new_booking_requests("maria@clinic.test", "Dr. Maria Santos", [pending("b1"), pending("b2")])

    assert sent is True
    assert brevo.client.sent[0].subject.startswith("2 new appointment requests ")
