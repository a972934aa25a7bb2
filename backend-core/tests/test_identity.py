"""Tests for username slugging and temporary password generation."""

from __future__ import annotations

import re
import unicodedata

import pytest

from peoplesync.services.directory_sync.identity import (
    MAX_USERNAME_LENGTH,
    PASSWORD_SYMBOLS,
    generate_password,
    remove_accents,
    slugify_username,
    with_collision_suffix,
)

USERNAME_RE = re.compile(r"^[a-z][a-z0-9_]{2,21}$")


# ---------------------------------------------------------------------------
# slugify_username
# ---------------------------------------------------------------------------


class TestSlugifyUsername:
    def test_vietnamese_name(self):
        assert slugify_username("Nguyễn", "Văn") == "nguyen_van"

    def test_european_name(self):
        assert slugify_username("Müller", "Schröder") == "muller_schroder"

    def test_empty_input_still_valid(self):
        username = slugify_username("", "")
        assert USERNAME_RE.match(username)
        assert username.startswith("user_")

    def test_none_input_still_valid(self):
        assert USERNAME_RE.match(slugify_username(None, None))

    def test_only_symbols_falls_back(self):
        username = slugify_username("!!!", "???")
        assert USERNAME_RE.match(username)

    def test_short_name_is_padded(self):
        username = slugify_username("Li")
        assert USERNAME_RE.match(username)
        assert username.startswith("li_")

    def test_leading_digit_gets_letter_prefix(self):
        username = slugify_username("2024", "Intern")
        assert username == "u2024_intern"
        assert USERNAME_RE.match(username)

    def test_digit_only_name_starts_with_letter(self):
        username = slugify_username("7")
        assert username[0].isalpha()
        assert USERNAME_RE.match(username)

    def test_long_name_is_truncated_without_trailing_underscore(self):
        username = slugify_username("Bartholomew Alexander", "Montgomery-Smythe")
        assert USERNAME_RE.match(username)
        assert len(username) <= MAX_USERNAME_LENGTH
        assert not username.endswith("_")

    def test_repeated_separators_collapse(self):
        assert slugify_username("Anne  --  Marie", "O'Neil") == "anne_marie_o_neil"

    def test_decomposed_input_is_normalized(self):
        decomposed = unicodedata.normalize("NFD", "Nguy\u1ec5n")
        assert slugify_username(decomposed, "Văn") == "nguyen_van"

    @pytest.mark.parametrize(
        "first,last",
        [
            ("Đặng", "Thị Hồng"),
            ("Łukasz", "Żółć"),
            ("Søren", "Ærø"),
            ("José", "Ñúñez"),
            ("Ünal", "Şahin"),
        ],
    )
    def test_output_always_matches_pattern(self, first, last):
        assert USERNAME_RE.match(slugify_username(first, last))


def test_remove_accents_maps_multi_char():
    assert remove_accents("straße") == "strasse"
    assert remove_accents("đ") == "d"


# ---------------------------------------------------------------------------
# with_collision_suffix
# ---------------------------------------------------------------------------


class TestCollisionSuffix:
    def test_suffix_shape(self):
        result = with_collision_suffix("nguyen_van")
        assert re.match(r"^nguyen_van_[a-z0-9]{4}$", result)

    def test_respects_length_limit(self):
        base = "a" * MAX_USERNAME_LENGTH
        result = with_collision_suffix(base)
        assert len(result) == MAX_USERNAME_LENGTH
        assert USERNAME_RE.match(result)

    def test_suffix_differs_between_calls(self):
        results = {with_collision_suffix("anna") for _ in range(20)}
        assert len(results) > 1


# ---------------------------------------------------------------------------
# generate_password
# ---------------------------------------------------------------------------


class TestGeneratePassword:
    def _assert_policy(self, password: str) -> None:
        assert any(c.islower() for c in password)
        assert any(c.isupper() for c in password)
        assert any(c.isdigit() for c in password)
        assert any(c in PASSWORD_SYMBOLS for c in password)

    def test_default_length(self):
        password = generate_password()
        assert len(password) == 12
        self._assert_policy(password)

    def test_length_floor(self):
        assert len(generate_password(4)) == 8

    def test_requested_length(self):
        assert len(generate_password(20)) == 20

    def test_policy_holds_over_many_draws(self):
        for _ in range(200):
            self._assert_policy(generate_password(8))

    def test_passwords_differ(self):
        assert generate_password() != generate_password()
