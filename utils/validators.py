import re
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{0,15}$")


class ISBNValidator:
    """ISBN-10/13 shape check. No checksum: catalog data often carries ISBNs
    with a wrong check digit and those still identify the book.
    """

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[\s-]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        if not isbn:
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            return s[:9].isdigit() and (s[9].isdigit() or s[9] == "X")
        if len(s) == 13:
            return s.isdigit()
        return False


class ContactValidator:
    @staticmethod
    def normalize_email(email: Optional[str]) -> str:
        return (email or "").strip().lower()

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        return bool(email) and EMAIL_PATTERN.match(ContactValidator.normalize_email(email)) is not None

    @staticmethod
    def normalize_phone(phone: Optional[str]) -> str:
        # allow the usual separators people type: spaces, dashes, parentheses
        return re.sub(r"[\s\-()]", "", phone or "")

    @staticmethod
    def is_valid_phone(phone: Optional[str]) -> bool:
        return PHONE_PATTERN.match(ContactValidator.normalize_phone(phone)) is not None


class TextValidator:
    @staticmethod
    def is_non_empty(text: Optional[str], max_length: Optional[int] = None) -> bool:
        if text is None:
            return False
        t = text.strip()
        if not t:
            return False
        return max_length is None or len(t) <= max_length

    @staticmethod
    def within_length(text: Optional[str], max_length: int) -> bool:
        return text is None or len(text.strip()) <= max_length
