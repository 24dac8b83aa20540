"""Seed a demo consultant with clients, bookings and chats"""
import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add parent directory to path
sys.path.append(str(Path(__file__).parent.parent.parent))

from portal.db.session import init_db
from portal.store.sql import SqlDocumentStore
from portal.utils.auth import create_access_token

CONSULTANT_ID = "demo-consultant"


async def seed_demo_data():
    """Create or reset the demo consultant for the portal"""
    init_db()
    store = SqlDocumentStore()
    now = datetime.now(timezone.utc)

    try:
        existing = await store.get("consultants", CONSULTANT_ID)
        if existing:
            print("⚠️  Demo consultant already exists, resetting demo data")

        await store.set("consultants", CONSULTANT_ID, {
            "email": "consultant@portal.local",
            "name": "Dr. Maria Santos",
            "specialty": "Lactation Consultant",
            "contactInfo": "0917 000 0000",
            "birthCenterAddress": "12 Mabini St, Quezon City",
            "availableDays": ["Monday", "Wednesday", "Friday"],
            "consultationHours": ["9:00 AM to 10:00 AM", "1:00 PM to 2:00 PM"],
            "platform": ["Online"],
            "profilePhoto": "",
            "unavailableNote": "",
        })

        await store.set("users", "demo-clinic", {
            "role": "clinic",
            "name": "Mabini Birth Center",
            "birthCenterAddress": "12 Mabini St, Quezon City",
        })
        for uid, first, last in (("parent-1", "Ana", "Reyes"), ("parent-2", "Liza", "Cruz")):
            await store.set("users", uid, {"role": "parent", "firstName": first, "lastName": last})
            await store.set("clients", f"client-{uid}", {"consultantId": CONSULTANT_ID, "userId": uid})

        bookings = {
            "booking-1": {"userId": "parent-1", "status": "pending", "paid": False, "date": now + timedelta(days=2)},
            "booking-2": {"userId": "parent-2", "status": "pending", "paid": True, "date": now},
            "booking-3": {"userId": "parent-1", "status": "accepted", "paid": False, "date": now - timedelta(days=1)},
            "booking-4": {"userId": "parent-2", "status": "completed", "paid": True, "date": now - timedelta(days=7),
                          "rating": 5},
        }
        for booking_id, data in bookings.items():
            await store.set("bookings", booking_id, {
                "consultantId": CONSULTANT_ID,
                "hour": "9:00 AM to 10:00 AM",
                "platform": "Online",
                "amount": 150000,
                **data,
            })

        await store.set("chats", "chat-1", {
            "doctorUid": CONSULTANT_ID,
            "parentUid": "parent-1",
            "seenByDoctor": False,
            "lastSeenByDoctor": now - timedelta(hours=2),
            "createdAt": now - timedelta(days=3),
        })
        await store.set("chats/chat-1/messages", "message-1", {
            "text": "Good morning, is Friday still available?",
            "user": {"_id": "parent-1", "name": "Ana Reyes"},
            "createdAt": now - timedelta(minutes=30),
            "seenByDoctor": False,
        })

        token = create_access_token(data={"sub": CONSULTANT_ID}, expires_delta=timedelta(days=30))

        print("✅ Demo data seeded successfully!")
        print(f"   Consultant: {CONSULTANT_ID}")
        print(f"   Bookings: {len(bookings)}")
        print("\n🔐 Access token (30 days):")
        print(f"   {token}")

    except Exception as e:
        print(f"❌ Error seeding demo data: {str(e)}")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    asyncio.run(seed_demo_data())
