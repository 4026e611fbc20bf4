"""Recipient address normalization.

WhatsApp chat ids look like ``<number>@c.us``. Callers usually hand us a bare
phone number, so the domain is appended exactly once.
"""

DEFAULT_CHAT_DOMAIN = "c.us"

# Characters people paste into phone numbers
_PHONE_DECORATIONS = (" ", "-", "(", ")", ".")


def is_qualified(address: str) -> bool:
    """True if the address already carries a domain part."""
    return "@" in address


def strip_phone_decorations(number: str) -> str:
    """
    Remove formatting from a bare phone number.

    Args:
        number: e.g. "+1 (555) 010-9999"

    Returns:
        Digits only, e.g. "15550109999"
    """
    cleaned = number.strip()
    for ch in _PHONE_DECORATIONS:
        cleaned = cleaned.replace(ch, "")
    return cleaned.lstrip("+")


def normalize_recipient(address: str, domain: str = DEFAULT_CHAT_DOMAIN) -> str:
    """
    Canonicalize a recipient into a chat id.

    Qualified addresses pass through unchanged, so the function is idempotent.

    Args:
        address: Bare number or chat id
        domain: Chat domain to append to bare numbers

    Returns:
        Chat id such as "15550109999@c.us"
    """
    address = address.strip()
    if is_qualified(address):
        return address
    return f"{strip_phone_decorations(address)}@{domain}"
