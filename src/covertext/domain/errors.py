"""Exceptions raised by the conversation engine and its collaborators."""


class CoverTextError(Exception):
    """Base class for CoverText domain errors."""


class MissingIdentityCardError(CoverTextError):
    """A card request was selected but the policy has no attached card file."""

    def __init__(self, policy_id: str):
        self.policy_id = policy_id
        super().__init__(f"No insurance card document found for policy {policy_id}")


class SMSDeliveryError(CoverTextError):
    """The SMS provider rejected or failed to accept an outbound message."""

    def __init__(self, detail: str, status_code: int | None = None):
        self.detail = detail
        self.status_code = status_code
        prefix = f"http_{status_code}: " if status_code else ""
        super().__init__(f"{prefix}{detail}")


class WebhookSignatureError(CoverTextError):
    """A provider webhook is unsigned, stale or signed with the wrong key."""


class UnknownAgencyError(CoverTextError):
    """No agency owns the number a message was sent to."""

    def __init__(self, to_phone: str | None):
        self.to_phone = to_phone
        super().__init__(f"No agency found for number {to_phone}")


class PolicyNotFoundError(CoverTextError):
    """A stored menu option points at a policy that no longer exists."""

    def __init__(self, policy_id: str):
        self.policy_id = policy_id
        super().__init__(f"Policy {policy_id} not found")
