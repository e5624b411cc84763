"""Seed a demo agency with policyholders, policies and insurance cards.

Usage:
    python scripts/seed_demo.py

Re-running replaces the demo rows. Text the agency number from one of the
contact numbers printed at the end to walk through the menu.
"""

import asyncio
import logging
from datetime import date, timedelta
from pathlib import Path

from sqlalchemy import delete, select

from covertext.domain.models import (
    Agency,
    AuditEvent,
    Contact,
    ConversationSession,
    Delivery,
    Document,
    MessageLog,
    Policy,
    Request,
    SmsOptOut,
)
from covertext.infra.database import async_session, init_db

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger(__name__)

UPLOADS_DIR = Path(__file__).resolve().parents[1] / "uploads"

AGENCIES = [
    ("Reliable Insurance - Downtown", "+15551234567"),
    ("Reliable Insurance - Westside", "+15551234568"),
]

# (agency phone, first, last, mobile, [(label, policy_type, months to expiry)])
CONTACTS = [
    ("+15551234567", "Alice", "Johnson", "+15559876543", [
        ("2018 Honda Accord", "auto", 6),
        ("2020 Toyota Camry", "auto", 8),
        ("2015 Ford F-150", "auto", 3),
    ]),
    ("+15551234567", "Bob", "Smith", "+15559876544", [
        ("2019 Chevrolet Silverado", "auto", 4),
        ("2021 Tesla Model 3", "auto", 10),
    ]),
    ("+15551234568", "Carol", "Williams", "+15559876545", [
        ("2022 BMW X5", "auto", 9),
        ("123 Oak Street", "homeowners", 11),
    ]),
]

# Smallest valid single-page PDF, standing in for a scanned ID card
PLACEHOLDER_CARD = (
    b"%PDF-1.1\n1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
    b"2 0 obj<</Type/Pages/Kids[3 0 R]/Count 1>>endobj\n"
    b"3 0 obj<</Type/Page/Parent 2 0 R/MediaBox[0 0 252 144]>>endobj\n"
    b"trailer<</Root 1 0 R>>\n%%EOF\n"
)


def _slug(label: str) -> str:
    return "-".join("".join(c if c.isalnum() else " " for c in label.lower()).split())


async def _clear(session, agency_phones: list[str]) -> None:
    result = await session.execute(select(Agency.id).where(Agency.phone_sms.in_(agency_phones)))
    agency_ids = list(result.scalars().all())
    if not agency_ids:
        return

    contact_ids = select(Contact.id).where(Contact.agency_id.in_(agency_ids))
    policy_ids = select(Policy.id).where(Policy.contact_id.in_(contact_ids))
    request_ids = select(Request.id).where(Request.agency_id.in_(agency_ids))

    await session.execute(delete(AuditEvent).where(AuditEvent.agency_id.in_(agency_ids)))
    await session.execute(delete(Delivery).where(Delivery.request_id.in_(request_ids)))
    await session.execute(delete(MessageLog).where(MessageLog.agency_id.in_(agency_ids)))
    await session.execute(delete(Request).where(Request.agency_id.in_(agency_ids)))
    await session.execute(delete(Document).where(Document.policy_id.in_(policy_ids)))
    await session.execute(delete(Policy).where(Policy.contact_id.in_(contact_ids)))
    await session.execute(delete(ConversationSession).where(ConversationSession.agency_id.in_(agency_ids)))
    await session.execute(delete(SmsOptOut).where(SmsOptOut.agency_id.in_(agency_ids)))
    await session.execute(delete(Contact).where(Contact.agency_id.in_(agency_ids)))
    await session.execute(delete(Agency).where(Agency.id.in_(agency_ids)))


async def seed():
    await init_db()
    cards_dir = UPLOADS_DIR / "cards"
    cards_dir.mkdir(parents=True, exist_ok=True)

    async with async_session() as session:
        async with session.begin():
            await _clear(session, [phone for _, phone in AGENCIES])

            agencies = {}
            for name, phone in AGENCIES:
                agency = Agency(name=name, phone_sms=phone, active=True)
                session.add(agency)
                agencies[phone] = agency
            await session.flush()

            today = date.today()
            for agency_phone, first, last, mobile, policies in CONTACTS:
                contact = Contact(
                    agency_id=agencies[agency_phone].id,
                    first_name=first,
                    last_name=last,
                    mobile_phone_e164=mobile,
                )
                session.add(contact)
                await session.flush()

                for label, policy_type, months in policies:
                    policy = Policy(
                        contact_id=contact.id,
                        label=label,
                        policy_type=policy_type,
                        expires_on=today + timedelta(days=30 * months),
                    )
                    session.add(policy)
                    # Distinct flushes keep created_at in menu order
                    await session.flush()

                    file_path = f"cards/insurance_card_{_slug(label)}.pdf"
                    (UPLOADS_DIR / file_path).write_bytes(PLACEHOLDER_CARD)
                    session.add(Document(
                        policy_id=policy.id,
                        file_path=file_path,
                        content_type="application/pdf",
                    ))

    logger.info("Seed complete")
    for name, phone in AGENCIES:
        logger.info("  %s SMS: %s", name, phone)
    for _, first, last, mobile, _ in CONTACTS:
        logger.info("  %s %s texts from %s", first, last, mobile)


if __name__ == "__main__":
    asyncio.run(seed())
