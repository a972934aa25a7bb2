"""Username and temporary password generation for new chat accounts."""

from __future__ import annotations

import re
import secrets
import string
import unicodedata

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 22
MIN_PASSWORD_LENGTH = 8

PASSWORD_SYMBOLS = "!@#$%^&*()-_=+[]{}|;:,.<>?"
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

_NON_SLUG = re.compile(r"[^a-z0-9]")
_REPEATED_UNDERSCORE = re.compile(r"_+")

ACCENT_REPLACEMENTS: dict[str, str] = {
    # Vietnamese vowels
    "à": "a", "á": "a", "ạ": "a", "ả": "a", "ã": "a",
    "â": "a", "ầ": "a", "ấ": "a", "ậ": "a", "ẩ": "a", "ẫ": "a",
    "ă": "a", "ằ": "a", "ắ": "a", "ặ": "a", "ẳ": "a", "ẵ": "a",
    "è": "e", "é": "e", "ẹ": "e", "ẻ": "e", "ẽ": "e",
    "ê": "e", "ề": "e", "ế": "e", "ệ": "e", "ể": "e", "ễ": "e",
    "ì": "i", "í": "i", "ị": "i", "ỉ": "i", "ĩ": "i",
    "ò": "o", "ó": "o", "ọ": "o", "ỏ": "o", "õ": "o",
    "ô": "o", "ồ": "o", "ố": "o", "ộ": "o", "ổ": "o", "ỗ": "o",
    "ơ": "o", "ờ": "o", "ớ": "o", "ợ": "o", "ở": "o", "ỡ": "o",
    "ù": "u", "ú": "u", "ụ": "u", "ủ": "u", "ũ": "u",
    "ư": "u", "ừ": "u", "ứ": "u", "ự": "u", "ử": "u", "ữ": "u",
    "ỳ": "y", "ý": "y", "ỵ": "y", "ỷ": "y", "ỹ": "y",
    "đ": "d",
    # Western, Central and Eastern European, Baltic
    "ç": "c", "ñ": "n", "ü": "u", "ö": "o", "ä": "a",
    "ß": "ss", "ø": "o", "å": "a", "æ": "ae", "œ": "oe",
    "ğ": "g", "ş": "s", "ı": "i", "ţ": "t", "ț": "t",
    "ș": "s", "ř": "r", "č": "c", "ě": "e", "š": "s",
    "ň": "n", "ď": "d", "ť": "t", "ĺ": "l", "ľ": "l",
    "ź": "z", "ż": "z", "ć": "c", "ń": "n", "ą": "a",
    "ę": "e", "ł": "l", "ő": "o", "ű": "u", "ž": "z",
    "ů": "u", "ā": "a", "ē": "e", "ī": "i", "ū": "u",
    "ģ": "g", "ķ": "k", "ļ": "l", "ņ": "n", "ŗ": "r",
    "ë": "e", "ï": "i", "ÿ": "y", "î": "i", "û": "u",
    "ś": "s", "ŕ": "r",
}

_ACCENT_TABLE = str.maketrans(ACCENT_REPLACEMENTS)


def remove_accents(text: str) -> str:
    return text.translate(_ACCENT_TABLE)


def _random_token(length: int) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def _clean(value: str) -> str:
    slug = _NON_SLUG.sub("_", value)
    slug = _REPEATED_UNDERSCORE.sub("_", slug)
    return slug.strip("_")


def _fit(slug: str) -> str:
    if not slug:
        slug = "user_" + _random_token(6)
    while len(slug) < MIN_USERNAME_LENGTH:
        slug += "_" + _random_token(3)
    if len(slug) > MAX_USERNAME_LENGTH:
        slug = slug[:MAX_USERNAME_LENGTH].rstrip("_")
        if len(slug) < MIN_USERNAME_LENGTH:
            return _fit(slug)
    return slug


def slugify_username(first_name: str | None, last_name: str | None = None) -> str:
    """Build a directory-safe username from a display name.

    Always returns a value matching ``[a-z][a-z0-9_]{2,21}``, including for
    empty input (a random ``user_xxxxxx`` name is generated).
    """
    full_name = first_name or ""
    if last_name:
        full_name += "." + last_name

    full_name = unicodedata.normalize("NFC", full_name.lower())
    slug = _clean(remove_accents(full_name))
    # Mattermost usernames must start with a letter.
    if slug[:1].isdigit():
        slug = "u" + slug
    return _fit(slug)


def with_collision_suffix(username: str) -> str:
    """Disambiguate ``username`` after a collision, keeping the length limit."""
    suffix = "_" + _random_token(4)
    base = username[: MAX_USERNAME_LENGTH - len(suffix)].rstrip("_") or "user"
    return base + suffix


def generate_password(length: int = 12) -> str:
    """Random password with at least one lower, upper, digit and symbol."""
    length = max(length, MIN_PASSWORD_LENGTH)
    rng = secrets.SystemRandom()

    chars = [
        rng.choice(string.ascii_lowercase),
        rng.choice(string.ascii_uppercase),
        rng.choice(string.digits),
        rng.choice(PASSWORD_SYMBOLS),
    ]
    alphabet = string.ascii_lowercase + string.ascii_uppercase + string.digits + PASSWORD_SYMBOLS
    chars.extend(rng.choice(alphabet) for _ in range(length - len(chars)))
    rng.shuffle(chars)
    return "".join(chars)
