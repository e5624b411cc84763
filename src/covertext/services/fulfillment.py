"""Fulfillment resolvers — turn a selected menu option into a reply payload.

Lookups are scoped to the policyholder who is texting, so a stale or forged
option ref can never reach another contact's policy.
"""

import logging
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from covertext.app.config import Settings, get_settings
from covertext.conversation import templates
from covertext.conversation.contracts import CardPayload, ExpirationPayload, MenuOption
from covertext.domain.enums import DocumentKind
from covertext.domain.errors import MissingIdentityCardError, PolicyNotFoundError
from covertext.domain.models import Contact, Document, Policy

logger = logging.getLogger(__name__)


class PolicyDirectory:
    """Read-only lookups over contacts, policies and their documents."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_contact(self, agency_id: str, phone: str) -> Contact | None:
        result = await self.db.execute(
            select(Contact)
            .where(Contact.agency_id == agency_id, Contact.mobile_phone_e164 == phone)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_policies(self, contact_id: str, policy_type: str | None = None) -> list[Policy]:
        """A contact's policies in menu order (oldest first)."""
        stmt = select(Policy).where(Policy.contact_id == contact_id)
        if policy_type:
            stmt = stmt.where(Policy.policy_type == policy_type)
        stmt = stmt.order_by(Policy.created_at, Policy.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_policy(self, policy_id: str, contact_id: str | None = None) -> Policy:
        stmt = select(Policy).where(Policy.id == policy_id)
        if contact_id:
            stmt = stmt.where(Policy.contact_id == contact_id)
        result = await self.db.execute(stmt)
        policy = result.scalar_one_or_none()
        if policy is None:
            raise PolicyNotFoundError(policy_id)
        return policy

    async def find_identity_card(self, policy_id: str) -> Document | None:
        result = await self.db.execute(
            select(Document)
            .where(
                Document.policy_id == policy_id,
                Document.kind == DocumentKind.AUTO_ID_CARD.value,
            )
            .order_by(Document.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()


def build_options(policies: list[Policy]) -> list[MenuOption]:
    """Number policies 1..N in the order given."""
    return [
        MenuOption(key=str(index), ref=str(policy.id), label=policy.label)
        for index, policy in enumerate(policies, start=1)
    ]


def public_file_url(document: Document, settings: Settings | None = None) -> str:
    """Carrier-reachable URL of a document's attached file."""
    settings = settings or get_settings()
    base = settings.public_base_url.rstrip("/")
    return f"{base}/uploads/{quote(document.file_path.lstrip('/'))}"


class CardResolver:
    """Resolves a vehicle selection into an MMS payload."""

    def __init__(self, directory: PolicyDirectory, settings: Settings | None = None):
        self.directory = directory
        self.settings = settings or get_settings()

    async def resolve(self, policy_id: str, contact_id: str | None = None) -> CardPayload:
        policy = await self.directory.get_policy(policy_id, contact_id)
        document = await self.directory.find_identity_card(policy.id)
        if document is None or not document.has_file:
            logger.error("Card requested for policy %s but no card file is attached", policy.id)
            raise MissingIdentityCardError(policy.id)

        return CardPayload(
            policy_id=policy.id,
            document_id=document.id,
            label=policy.label,
            body=templates.render(templates.CARD_DELIVERY, label=policy.label),
            media_url=public_file_url(document, self.settings),
        )


class ExpirationResolver:
    """Resolves a policy selection into an expiration-date SMS payload."""

    def __init__(self, directory: PolicyDirectory):
        self.directory = directory

    async def resolve(self, policy_id: str, contact_id: str | None = None) -> ExpirationPayload:
        policy = await self.directory.get_policy(policy_id, contact_id)
        return ExpirationPayload(
            policy_id=policy.id,
            label=policy.label,
            expires_on=policy.expires_on,
            body=templates.render(
                templates.EXPIRE_DELIVERY,
                label=policy.label,
                expires_on=policy.expires_on.strftime(templates.DATE_FORMAT),
            ),
        )
