"""Tests for opaque token generation and expiry calculation."""

from datetime import timedelta

from app.domain.auth_tokens import factory
from conftest import START


class TestTokenValue:
    """Token values are 32 alphanumeric characters from the CSPRNG."""

    def test_value_matches_pattern(self):
        value = factory.generate_token_value()
        assert len(value) == 32
        assert factory.TOKEN_PATTERN.fullmatch(value)

    def test_values_are_unique_across_many_draws(self):
        values = {factory.generate_token_value() for _ in range(10_000)}
        assert len(values) == 10_000

    def test_generate_bundles_value_and_expiry(self):
        generated = factory.generate(START)
        assert factory.is_well_formed(generated.value)
        assert generated.expires_at == START + timedelta(minutes=15)


class TestExpiration:
    def test_default_ttl_is_fifteen_minutes(self):
        assert factory.calculate_expiration(START) == START + timedelta(minutes=15)

    def test_custom_ttl(self):
        assert factory.calculate_expiration(START, timedelta(minutes=5)) == START + timedelta(minutes=5)

    def test_defaults_to_current_time(self):
        expires = factory.calculate_expiration()
        assert expires.tzinfo is not None


class TestWellFormed:
    """Format checks run before any storage lookup."""

    def test_accepts_alphanumeric_32(self):
        assert factory.is_well_formed("A" * 16 + "9" * 16)

    def test_rejects_wrong_length(self):
        assert not factory.is_well_formed("A" * 31)
        assert not factory.is_well_formed("A" * 33)

    def test_rejects_symbols(self):
        assert not factory.is_well_formed("A" * 31 + "-")

    def test_rejects_non_strings(self):
        assert not factory.is_well_formed(None)
        assert not factory.is_well_formed(12345)

    def test_rejects_trailing_newline(self):
        assert not factory.is_well_formed("A" * 32 + "\n")
