"""Unit tests for PII masking"""

from loan_monitor.utils.sanitization import mask_contact, mask_name, mask_string, redact_notes


def test_mask_string_keeps_tail():
    assert mask_string("0821234567") == "******4567"


def test_short_values_are_fully_masked():
    assert mask_string("abc") == "***"
    assert mask_string("") == ""
    assert mask_string(None) == ""


def test_mask_name_keeps_three_characters():
    assert mask_name("Aunt Thandi") == "********ndi"


def test_mask_contact_email():
    masked = mask_contact("thandi@example.com")

    assert masked.endswith(".com")
    assert "thandi" not in masked


def test_notes_are_redacted():
    assert redact_notes("Car deposit, due back in March") == "[REDACTED]"
    assert redact_notes(None) is None
