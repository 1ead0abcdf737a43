"""Tests for bot deep link construction."""

import pytest

from app.domain.auth_tokens.deep_link import build_deep_link

TOKEN = "abcDEF0123456789abcDEF0123456789"


class TestBuildDeepLink:
    def test_default_shape(self):
        assert (
            build_deep_link(TOKEN, host="t.me", bot_handle="my_bot")
            == f"https://t.me/my_bot?start={TOKEN}"
        )

    def test_strips_at_sign_from_handle(self):
        assert build_deep_link(TOKEN, host="t.me", bot_handle="@my_bot").endswith(
            f"/my_bot?start={TOKEN}"
        )

    def test_host_scheme_and_trailing_slash_are_ignored(self):
        link = build_deep_link(TOKEN, host="https://t.me/", bot_handle="my_bot")
        assert link == f"https://t.me/my_bot?start={TOKEN}"

    def test_missing_handle_is_rejected(self):
        with pytest.raises(ValueError):
            build_deep_link(TOKEN, host="t.me", bot_handle="  ")

    def test_malformed_token_is_rejected(self):
        with pytest.raises(ValueError):
            build_deep_link("short", host="t.me", bot_handle="my_bot")
