"""Visit token issue and single-use redemption."""

import asyncio

import pytest

from catmap.errors import (
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenScopeError,
    ValidationError,
)
from catmap.tokens.service import token_scope


class TestTokenScope:
    def test_format(self):
        assert token_scope("treat", "abc") == "treat:abc"

    def test_unknown_action(self):
        with pytest.raises(ValidationError):
            token_scope("pet", "abc")

    def test_missing_cat(self):
        with pytest.raises(ValidationError):
            token_scope("comment", "")


class TestIssue:
    """Test token issuing."""

    @pytest.mark.asyncio
    async def test_issue_sets_expiry(self, services, clock):
        token = await services.tokens.issue("treat:c1", ttl_seconds=60)
        assert token.consumed is False
        assert token.scope == "treat:c1"
        assert token.expires_at == int(clock.now + 60)

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, services):
        tokens = {(await services.tokens.issue("treat:c1")).token for _ in range(20)}
        assert len(tokens) == 20

    @pytest.mark.asyncio
    async def test_default_ttl(self, services, settings, clock):
        token = await services.tokens.issue("treat:c1")
        assert token.expires_at == int(clock.now + settings.token_default_ttl_seconds)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [0, -5, 3601])
    async def test_ttl_bounds(self, services, ttl):
        with pytest.raises(ValidationError):
            await services.tokens.issue("treat:c1", ttl_seconds=ttl)


class TestRedeem:
    """Test redemption outcomes."""

    @pytest.mark.asyncio
    async def test_redeem_once(self, services):
        token = await services.tokens.issue("treat:c1")
        assert await services.tokens.redeem(token.token) is True
        with pytest.raises(TokenAlreadyUsedError):
            await services.tokens.redeem(token.token)

    @pytest.mark.asyncio
    async def test_unknown_token(self, services):
        with pytest.raises(TokenNotFoundError):
            await services.tokens.redeem("does-not-exist")

    @pytest.mark.asyncio
    async def test_empty_token(self, services):
        with pytest.raises(TokenNotFoundError):
            await services.tokens.redeem("")

    @pytest.mark.asyncio
    async def test_expired_token(self, services, clock):
        token = await services.tokens.issue("treat:c1", ttl_seconds=60)
        clock.advance(61)
        with pytest.raises(TokenExpiredError):
            await services.tokens.redeem(token.token)

    @pytest.mark.asyncio
    async def test_valid_just_before_expiry(self, services, clock):
        token = await services.tokens.issue("treat:c1", ttl_seconds=60)
        clock.advance(58)
        assert await services.tokens.redeem(token.token) is True

    @pytest.mark.asyncio
    async def test_purged_token_is_not_found(self, services, clock):
        token = await services.tokens.issue("treat:c1", ttl_seconds=60)
        clock.advance(60 + 3600 + 1)
        with pytest.raises(TokenNotFoundError):
            await services.tokens.redeem(token.token)

    @pytest.mark.asyncio
    async def test_scope_mismatch_keeps_token(self, services):
        token = await services.tokens.issue("comment:c1")
        with pytest.raises(TokenScopeError):
            await services.tokens.redeem(token.token, scope="treat:c1")
        assert await services.tokens.redeem(token.token, scope="comment:c1") is True

    @pytest.mark.asyncio
    async def test_concurrent_redeem_single_winner(self, services):
        token = await services.tokens.issue("treat:c1")
        results = await asyncio.gather(
            *(services.tokens.redeem(token.token) for _ in range(10)),
            return_exceptions=True,
        )
        assert results.count(True) == 1
        assert all(isinstance(r, TokenAlreadyUsedError) for r in results if r is not True)
