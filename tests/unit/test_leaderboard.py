"""Leaderboard scores and ranking."""

import pytest

from catmap.errors import ValidationError
from catmap.leaderboard.service import MAX_COUNT, build_rank_key


async def _score(leaderboard, user_id, scope, times):
    for _ in range(times):
        await leaderboard.increment_score(user_id, scope)


class TestIncrementScore:
    """Test counting."""

    @pytest.mark.asyncio
    async def test_first_increment_creates_stat(self, services):
        assert await services.leaderboard.increment_score("alice", "GLOBAL") == 1
        stat = await services.leaderboard.get_stat("alice", "GLOBAL")
        assert stat.count == 1
        assert stat.gsi1pk == "SCOPE#GLOBAL"
        assert stat.gsi1sk == build_rank_key(1, "alice")

    @pytest.mark.asyncio
    async def test_scopes_are_independent(self, services):
        await _score(services.leaderboard, "alice", "GLOBAL", 3)
        await _score(services.leaderboard, "alice", "NYC", 1)
        assert (await services.leaderboard.get_stat("alice", "GLOBAL")).count == 3
        assert (await services.leaderboard.get_stat("alice", "NYC")).count == 1

    @pytest.mark.asyncio
    async def test_overflow_leaves_count_unchanged(self, services):
        await services.leaderboard.set_count("alice", "GLOBAL", MAX_COUNT)
        with pytest.raises(ValidationError):
            await services.leaderboard.increment_score("alice", "GLOBAL")
        assert (await services.leaderboard.get_stat("alice", "GLOBAL")).count == MAX_COUNT

    @pytest.mark.asyncio
    async def test_invalid_scope(self, services):
        with pytest.raises(ValidationError):
            await services.leaderboard.increment_score("alice", "bad#scope")


class TestTopN:
    """Test ranking order."""

    @pytest.mark.asyncio
    async def test_descending_count_with_tie_break(self, services):
        await _score(services.leaderboard, "userB", "GLOBAL", 5)
        await _score(services.leaderboard, "userC", "GLOBAL", 3)
        await _score(services.leaderboard, "userA", "GLOBAL", 5)

        top = await services.leaderboard.top_n("GLOBAL", 3)
        assert top == [("userA", 5), ("userB", 5), ("userC", 3)]

    @pytest.mark.asyncio
    async def test_n_limits_result(self, services):
        for i in range(5):
            await _score(services.leaderboard, f"user{i}", "GLOBAL", i + 1)
        top = await services.leaderboard.top_n("GLOBAL", 2)
        assert top == [("user4", 5), ("user3", 4)]

    @pytest.mark.asyncio
    async def test_rank_follows_increments(self, services):
        await _score(services.leaderboard, "alice", "GLOBAL", 2)
        await _score(services.leaderboard, "bob", "GLOBAL", 1)
        await _score(services.leaderboard, "bob", "GLOBAL", 2)
        top = await services.leaderboard.top_n("GLOBAL", 10)
        assert top == [("bob", 3), ("alice", 2)]

    @pytest.mark.asyncio
    async def test_empty_scope(self, services):
        assert await services.leaderboard.top_n("NOWHERE", 10) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n", [0, -1, 101])
    async def test_n_bounds(self, services, n):
        with pytest.raises(ValidationError):
            await services.leaderboard.top_n("GLOBAL", n)
