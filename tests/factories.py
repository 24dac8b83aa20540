"""Document builders shared by the tests"""
from datetime import datetime, timedelta, timezone

CONSULTANT_ID = "consultant-1"
OTHER_CONSULTANT_ID = "consultant-2"

NOW = datetime(2026, 10, 15, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock injected into stores, commands and views"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def consultant_doc(**overrides):
    data = {
        "email": "maria@clinic.test",
        "name": "Dr. Maria Santos",
        "specialty": "Lactation Consultant",
        "availableDays": ["Monday"],
        "consultationHours": [],
        "platform": ["Online"],
        "profilePhoto": "",
    }
    data.update(overrides)
    return data


def booking_doc(status="pending", paid=False, date=NOW, consultant_id=CONSULTANT_ID, **overrides):
    data = {
        "consultantId": consultant_id,
        "userId": "parent-1",
        "status": status,
        "paid": paid,
        "date": date,
        "hour": "9:00 AM to 10:00 AM",
        "platform": "Online",
        "amount": 150000,
    }
    data.update(overrides)
    return data


def chat_doc(parent_uid="parent-1", last_seen=None, created_at=NOW, consultant_id=CONSULTANT_ID, **overrides):
    data = {
        "doctorUid": consultant_id,
        "parentUid": parent_uid,
        "seenByDoctor": False,
        "lastSeenByDoctor": last_seen,
        "createdAt": created_at,
    }
    data.update(overrides)
    return data


def message_doc(text, sender_id, created_at, seen=False):
    return {
        "text": text,
        "user": {"_id": sender_id, "name": "Sender"},
        "createdAt": created_at,
        "seenByDoctor": seen,
    }
