"""Comment ledger."""

import pytest

from catmap.errors import NotFoundError, TokenScopeError, ValidationError
from tests.conftest import NYC


class TestPost:
    """Test posting comments."""

    @pytest.mark.asyncio
    async def test_post_and_list_in_order(self, services, approved_cat, alice, bob):
        first = await services.comments.post(approved_cat, alice, "Such a good cat")
        second = await services.comments.post(approved_cat, bob, "Sleeps on the bread")
        third = await services.comments.post(approved_cat, alice, "Was here again")

        page = await services.comments.list_by_cat(approved_cat)
        assert [c.comment_id for c in page.items] == [first, second, third]
        assert page.items[1].visitor_id == "USER#bob"
        assert page.items[1].body == "Sleeps on the bread"

    @pytest.mark.asyncio
    async def test_newest_first(self, services, approved_cat, alice):
        ids = [await services.comments.post(approved_cat, alice, f"comment {i}") for i in range(3)]
        page = await services.comments.list_by_cat(approved_cat, newest_first=True)
        assert [c.comment_id for c in page.items] == ids[::-1]

    @pytest.mark.asyncio
    async def test_paging(self, services, approved_cat, alice):
        ids = [await services.comments.post(approved_cat, alice, f"comment {i}") for i in range(5)]
        first = await services.comments.list_by_cat(approved_cat, limit=3)
        second = await services.comments.list_by_cat(approved_cat, cursor=first.cursor, limit=3)
        assert [c.comment_id for c in first.items + second.items] == ids
        assert second.cursor is None

    @pytest.mark.asyncio
    async def test_body_is_trimmed(self, services, approved_cat, alice):
        await services.comments.post(approved_cat, alice, "  hi  ")
        page = await services.comments.list_by_cat(approved_cat)
        assert page.items[0].body == "hi"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["", "   ", "x" * 501])
    async def test_invalid_body(self, services, approved_cat, alice, body):
        with pytest.raises(ValidationError):
            await services.comments.post(approved_cat, alice, body)

    @pytest.mark.asyncio
    async def test_pending_cat(self, services, alice):
        cat_id = await services.cats.submit(NYC)
        with pytest.raises(NotFoundError):
            await services.comments.post(cat_id, alice, "hello")

    @pytest.mark.asyncio
    async def test_comment_token_spent(self, services, approved_cat, alice):
        token = await services.tokens.issue(f"comment:{approved_cat}")
        await services.comments.post(approved_cat, alice, "hello", token=token.token)
        assert len((await services.comments.list_by_cat(approved_cat)).items) == 1

    @pytest.mark.asyncio
    async def test_treat_token_refused(self, services, approved_cat, alice):
        token = await services.tokens.issue(f"treat:{approved_cat}")
        with pytest.raises(TokenScopeError):
            await services.comments.post(approved_cat, alice, "hello", token=token.token)
        assert (await services.comments.list_by_cat(approved_cat)).items == []


class TestRemove:
    """Test moderation removal."""

    @pytest.mark.asyncio
    async def test_remove(self, services, approved_cat, alice):
        keep = await services.comments.post(approved_cat, alice, "nice")
        drop = await services.comments.post(approved_cat, alice, "spam")
        await services.comments.remove(approved_cat, drop, moderator="USER#mod")
        page = await services.comments.list_by_cat(approved_cat)
        assert [c.comment_id for c in page.items] == [keep]

    @pytest.mark.asyncio
    async def test_remove_missing(self, services, approved_cat):
        with pytest.raises(NotFoundError):
            await services.comments.remove(approved_cat, "2026-01-01T00:00:00.000000Z#USER#nobody")
