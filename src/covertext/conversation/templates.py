"""Reply templates — every text the engine can send.

Placeholders use str.format syntax; render() fills them.
"""

from .contracts import MenuOption

GLOBAL_MENU = (
    "Welcome to CoverText! 📋\n"
    "\n"
    "Reply with:\n"
    "• CARD - Get your insurance card\n"
    "• EXPIRING - Check policy expiration dates\n"
    "• HELP - Show this menu again\n"
    "\n"
    "What can I help you with today?"
)

GLOBAL_MENU_SHORT = "Reply: CARD, EXPIRING, or HELP"

GLOBAL_UNSUPPORTED = (
    "I'm not sure how to help with that request. For assistance with other "
    "matters, please contact your agency directly.\n"
    "\n"
    "Reply MENU to see available options."
)

CARD_VEHICLE_MENU = (
    "Select which vehicle's insurance card you need:\n"
    "\n"
    "{options}\n"
    "\n"
    "Reply with the number, or MENU to go back."
)

CARD_DELIVERY = "Attached is your insurance card for your {label}. Reply MENU for more options."

EXPIRE_POLICY_MENU = (
    "Select which policy you'd like to check:\n"
    "\n"
    "{options}\n"
    "\n"
    "Reply with the number, or MENU to go back."
)

EXPIRE_DELIVERY = "Your policy for {label} expires on {expires_on}. Reply MENU for more options."

INVALID_SELECTION = (
    "Invalid selection. Please reply with a valid number or MENU to return to the main menu."
)

ACCOUNT_NOT_FOUND = "We couldn't find your account. Please contact your agency."

NO_AUTO_POLICIES = "No auto policies found on your account. Please contact your agency."

NO_POLICIES = "No policies found on your account. Please contact your agency."

# Carrier compliance keywords
STOP_CONFIRM = (
    "You have been unsubscribed and will no longer receive messages from this number. "
    "Reply START to re-subscribe."
)

START_CONFIRM = (
    "You have been re-subscribed to messages from this number. "
    "Reply MENU to see available options."
)

HELP = (
    "CoverText: get your insurance card or check when a policy expires by text.\n"
    "Reply CARD, EXPIRING, or MENU. Reply STOP to opt out. "
    "Msg & data rates may apply."
)

OPTED_OUT_BLOCK_NOTICE = (
    "You are unsubscribed from this number. Reply START to re-subscribe."
)

RATE_LIMITED = (
    "You've sent too many messages in a short time. Please wait a while and try again."
)

# Template ids recorded on menu audit events
MENU_TEMPLATE_FULL = "global.menu"
MENU_TEMPLATE_SHORT = "global.menu_short"

DATE_FORMAT = "%B %d, %Y"


def render(template: str, **kwargs) -> str:
    """Fill a template's placeholders."""
    return template.format(**kwargs)


def format_options(options: list[MenuOption]) -> str:
    """One "<key>. <label>" line per option."""
    return "\n".join(f"{option.key}. {option.label}" for option in options)
