"""Treat deduplication, token gating and counter completion."""

import asyncio

import pytest

from catmap.errors import NotFoundError, TokenAlreadyUsedError, TokenScopeError
from catmap.treats.service import TreatStatus
from tests.conftest import NYC, make_approved_cat


async def _token(services, cat_id, action="treat"):
    return (await services.tokens.issue(f"{action}:{cat_id}")).token


class TestGiveTreat:
    """Test the treat flow."""

    @pytest.mark.asyncio
    async def test_first_treat_awarded(self, services, approved_cat, alice):
        result = await services.treats.give_treat(approved_cat, alice, await _token(services, approved_cat))
        assert result.status == TreatStatus.AWARDED
        assert result.treat_count == 1
        assert await services.treats.has_given(approved_cat, alice)
        assert (await services.leaderboard.get_stat("alice", "GLOBAL")).count == 1
        assert (await services.leaderboard.get_stat("alice", "NYC")).count == 1

    @pytest.mark.asyncio
    async def test_second_treat_already_given(self, services, approved_cat, alice):
        await services.treats.give_treat(approved_cat, alice, await _token(services, approved_cat))
        result = await services.treats.give_treat(approved_cat, alice, await _token(services, approved_cat))
        assert result.status == TreatStatus.ALREADY_GIVEN
        assert (await services.cats.get(approved_cat)).treat_count == 1
        assert (await services.leaderboard.get_stat("alice", "GLOBAL")).count == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_award_once(self, services, approved_cat, alice):
        tokens = [await _token(services, approved_cat) for _ in range(5)]
        results = await asyncio.gather(*(services.treats.give_treat(approved_cat, alice, t) for t in tokens))
        assert [r.status for r in results].count(TreatStatus.AWARDED) == 1
        assert (await services.cats.get(approved_cat)).treat_count == 1
        assert (await services.leaderboard.get_stat("alice", "GLOBAL")).count == 1

    @pytest.mark.asyncio
    async def test_cat_without_scope_counts_global_only(self, services, alice):
        cat_id = await make_approved_cat(services)
        await services.treats.give_treat(cat_id, alice, await _token(services, cat_id))
        assert (await services.leaderboard.get_stat("alice", "GLOBAL")).count == 1
        assert await services.leaderboard.top_n("NYC", 10) == []

    @pytest.mark.asyncio
    async def test_anonymous_treat_never_ranks(self, services, approved_cat, anon):
        result = await services.treats.give_treat(approved_cat, anon, await _token(services, approved_cat))
        assert result.status == TreatStatus.AWARDED
        assert (await services.cats.get(approved_cat)).treat_count == 1
        assert await services.leaderboard.top_n("GLOBAL", 10) == []

    @pytest.mark.asyncio
    async def test_used_token_records_nothing(self, services, approved_cat, alice, bob):
        token = await _token(services, approved_cat)
        await services.treats.give_treat(approved_cat, alice, token)
        with pytest.raises(TokenAlreadyUsedError):
            await services.treats.give_treat(approved_cat, bob, token)
        assert not await services.treats.has_given(approved_cat, bob)
        assert (await services.cats.get(approved_cat)).treat_count == 1

    @pytest.mark.asyncio
    async def test_comment_token_refused_and_kept(self, services, approved_cat, alice):
        token = await _token(services, approved_cat, action="comment")
        with pytest.raises(TokenScopeError):
            await services.treats.give_treat(approved_cat, alice, token)
        assert not await services.treats.has_given(approved_cat, alice)
        assert await services.tokens.redeem(token, scope=f"comment:{approved_cat}")

    @pytest.mark.asyncio
    async def test_token_for_other_cat_refused(self, services, approved_cat, alice):
        other = await make_approved_cat(services)
        with pytest.raises(TokenScopeError):
            await services.treats.give_treat(approved_cat, alice, await _token(services, other))

    @pytest.mark.asyncio
    async def test_pending_cat(self, services, alice):
        cat_id = await services.cats.submit(NYC)
        with pytest.raises(NotFoundError):
            await services.treats.give_treat(cat_id, alice, await _token(services, cat_id))


class TestCounterCompletion:
    """Test finishing the counter steps of an interrupted treat."""

    @pytest.mark.asyncio
    async def test_lapsed_claim_is_resumed(self, services, approved_cat, alice, clock, monkeypatch):
        async def crash(*_args, **_kwargs):
            raise RuntimeError("process died")

        monkeypatch.setattr(services.leaderboard, "increment_score", crash)
        with pytest.raises(RuntimeError):
            await services.treats.give_treat(approved_cat, alice, await _token(services, approved_cat))
        monkeypatch.undo()

        # Cat counter applied, leaderboard steps still outstanding
        assert (await services.cats.get(approved_cat)).treat_count == 1
        assert await services.leaderboard.get_stat("alice", "GLOBAL") is None

        # A retry inside the lease leaves the claim alone
        result = await services.treats.give_treat(approved_cat, alice, await _token(services, approved_cat))
        assert result.status == TreatStatus.ALREADY_GIVEN
        assert await services.leaderboard.get_stat("alice", "GLOBAL") is None

        clock.advance(31)
        result = await services.treats.give_treat(approved_cat, alice, await _token(services, approved_cat))
        assert result.status == TreatStatus.ALREADY_GIVEN
        assert (await services.cats.get(approved_cat)).treat_count == 1
        assert (await services.leaderboard.get_stat("alice", "GLOBAL")).count == 1
        assert (await services.leaderboard.get_stat("alice", "NYC")).count == 1

    @pytest.mark.asyncio
    async def test_completed_treat_not_reapplied_after_lease(self, services, approved_cat, alice, clock):
        await services.treats.give_treat(approved_cat, alice, await _token(services, approved_cat))
        clock.advance(120)
        await services.treats.give_treat(approved_cat, alice, await _token(services, approved_cat))
        assert (await services.cats.get(approved_cat)).treat_count == 1
        assert (await services.leaderboard.get_stat("alice", "GLOBAL")).count == 1


class TestCounts:
    @pytest.mark.asyncio
    async def test_count_for_cat_and_visitor(self, services, approved_cat, alice, bob):
        other = await make_approved_cat(services, scope="LA")
        await services.treats.give_treat(approved_cat, alice, await _token(services, approved_cat))
        await services.treats.give_treat(other, alice, await _token(services, other))
        await services.treats.give_treat(approved_cat, bob, await _token(services, approved_cat))

        assert await services.treats.count_for_cat(approved_cat) == 2
        assert await services.treats.count_for_visitor(alice, "GLOBAL") == 2
        assert await services.treats.count_for_visitor(alice, "NYC") == 1
        assert await services.treats.count_for_visitor(alice, "LA") == 1
