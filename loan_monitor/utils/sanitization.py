"""Masking of personal details before they leave the service"""


def mask_string(value: str | None, visible_chars: int = 4) -> str:
    """Mask all but the last `visible_chars` characters: "0821234567" -> "******4567" """
    if not value or len(value) <= visible_chars:
        return "*" * len(value or "")
    return "*" * (len(value) - visible_chars) + value[-visible_chars:]


def mask_name(name: str | None) -> str:
    return mask_string(name, 3)


def mask_contact(contact: str | None) -> str:
    """Email, phone number or account id"""
    return mask_string(contact, 4)


def redact_notes(notes: str | None) -> str | None:
    return "[REDACTED]" if notes else None
