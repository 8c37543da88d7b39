"""Tests for names.py identifier sanitizing and derivation."""

import re

import pytest

from tavernbridge.names import channel_identifier, conversation_names, private_identifier, sanitize

_SAFE = re.compile(r"^[A-Za-z0-9_-]*$")


class TestSanitize:
    def test_private_identifier_with_space(self):
        assert sanitize("PM_with_Jane Doe") == "PM_with_Jane_Doe"

    def test_safe_input_unchanged(self):
        assert sanitize("Lounge-2_b") == "Lounge-2_b"

    def test_empty_string(self):
        assert sanitize("") == ""

    @pytest.mark.parametrize(
        "raw",
        ["ADH-1234abcd", "Café ☕", "a/b\\c..d", "tab\there", "名前", "Room #1 (18+)"],
    )
    def test_output_safe_and_same_length(self, raw):
        result = sanitize(raw)
        assert _SAFE.match(result)
        assert len(result) == len(raw)

    def test_deterministic(self):
        assert sanitize("Some Room!") == sanitize("Some Room!")

    def test_distinct_inputs_may_collide(self):
        assert sanitize("a b") == sanitize("a.b")


class TestIdentifiers:
    def test_channel_identifier_is_channel_name(self):
        assert channel_identifier("Lounge") == "Lounge"

    def test_private_identifier(self):
        assert private_identifier("Jane") == "PM_with_Jane"

    def test_conversation_names_sanitized_pair(self):
        assert conversation_names("PM_with_Jane Doe") == ("PM_with_Jane_Doe", "PM_with_Jane_Doe")
