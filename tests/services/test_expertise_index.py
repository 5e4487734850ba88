"""Tests for expert ranking and the live load counters."""

import pytest

from expertdesk.exceptions import NotFoundError, ValidationError
from expertdesk.services import expertise_index
from tests.factories import grant, set_score
from tests.factories.users import ASKER, EXPERT_1, EXPERT_2, EXPERT_3

EXPERT_4 = 13
UNVERIFIED = 14


@pytest.fixture
def more_experts(directory):
    directory.add(EXPERT_4, verified=True)
    directory.add(UNVERIFIED, verified=False)
    return directory


class TestRanking:
    @pytest.mark.asyncio
    async def test_tier_order(self, db, directory, target, more_experts):
        await grant(db, EXPERT_1, target.area_id, None, "secondary")
        await grant(db, EXPERT_2, target.area_id, target.tag_id, "secondary")
        await grant(db, EXPERT_3, target.area_id, None, "primary")
        await grant(db, EXPERT_4, target.area_id, target.tag_id, "primary")

        ranked = await expertise_index.candidates(db, directory, target.area_id, target.tag_id)

        assert ranked == [EXPERT_4, EXPERT_3, EXPERT_2, EXPERT_1]

    @pytest.mark.asyncio
    async def test_other_tag_and_other_area_excluded(self, db, directory, target):
        await grant(db, EXPERT_1, target.area_id, target.tag_id)
        await grant(db, EXPERT_2, target.area_id, target.sibling_tag_id)
        await grant(db, EXPERT_3, target.other_area_id, None)

        ranked = await expertise_index.candidates(db, directory, target.area_id, target.tag_id)

        assert ranked == [EXPERT_1]

    @pytest.mark.asyncio
    async def test_unverified_users_never_ranked(self, db, directory, target, more_experts):
        await grant(db, UNVERIFIED, target.area_id, target.tag_id)
        await grant(db, EXPERT_1, target.area_id, None, "secondary")

        ranked = await expertise_index.candidates(db, directory, target.area_id, target.tag_id)

        assert ranked == [EXPERT_1]

    @pytest.mark.asyncio
    async def test_no_one_qualifies(self, db, directory, target):
        assert await expertise_index.candidates(db, directory, target.area_id, target.tag_id) == []

    @pytest.mark.asyncio
    async def test_higher_trust_first_within_tier(self, db, directory, target):
        await grant(db, EXPERT_1, target.area_id, target.tag_id)
        await grant(db, EXPERT_2, target.area_id, target.tag_id)
        await set_score(db, EXPERT_2, 200)

        ranked = await expertise_index.candidates(db, directory, target.area_id, target.tag_id)

        assert ranked == [EXPERT_2, EXPERT_1]

    @pytest.mark.asyncio
    async def test_lower_load_first_at_equal_trust(self, db, directory, target):
        await grant(db, EXPERT_1, target.area_id, target.tag_id)
        await grant(db, EXPERT_2, target.area_id, target.tag_id)
        await expertise_index.increment_load(db, EXPERT_1)

        ranked = await expertise_index.candidates(db, directory, target.area_id, target.tag_id)

        assert ranked == [EXPERT_2, EXPERT_1]

    @pytest.mark.asyncio
    async def test_user_id_breaks_remaining_ties(self, db, directory, target):
        await grant(db, EXPERT_2, target.area_id, target.tag_id)
        await grant(db, EXPERT_1, target.area_id, target.tag_id)

        ranked = await expertise_index.candidates(db, directory, target.area_id, target.tag_id)

        assert ranked == [EXPERT_1, EXPERT_2]

    @pytest.mark.asyncio
    async def test_best_row_wins_for_multi_grant_user(self, db, directory, target):
        await grant(db, EXPERT_1, target.area_id, None, "secondary")
        await grant(db, EXPERT_1, target.area_id, target.tag_id, "primary")
        await grant(db, EXPERT_2, target.area_id, None, "primary")

        ranked = await expertise_index.rank_candidates(
            db, directory, target.area_id, target.tag_id
        )

        assert [r.user_id for r in ranked] == [EXPERT_1, EXPERT_2]
        assert ranked[0].tier == 0

    @pytest.mark.asyncio
    async def test_requery_sees_fresh_load(self, db, directory, target):
        await grant(db, EXPERT_1, target.area_id, target.tag_id)
        await grant(db, EXPERT_2, target.area_id, target.tag_id)

        await expertise_index.increment_load(db, EXPERT_1)
        first = await expertise_index.candidates(db, directory, target.area_id, target.tag_id)
        await expertise_index.decrement_load(db, EXPERT_1)
        second = await expertise_index.candidates(db, directory, target.area_id, target.tag_id)

        assert first == [EXPERT_2, EXPERT_1]
        assert second == [EXPERT_1, EXPERT_2]


class TestLoadCounters:
    @pytest.mark.asyncio
    async def test_increment_and_decrement(self, db):
        await expertise_index.increment_load(db, EXPERT_1)
        await expertise_index.increment_load(db, EXPERT_1)
        await expertise_index.decrement_load(db, EXPERT_1)

        assert await expertise_index.load_counts(db, [EXPERT_1, EXPERT_2]) == {
            EXPERT_1: 1,
            EXPERT_2: 0,
        }

    @pytest.mark.asyncio
    async def test_decrement_never_goes_negative(self, db):
        await expertise_index.decrement_load(db, EXPERT_1)
        await expertise_index.increment_load(db, EXPERT_1)
        await expertise_index.decrement_load(db, EXPERT_1)
        await expertise_index.decrement_load(db, EXPERT_1)

        assert (await expertise_index.load_counts(db, [EXPERT_1]))[EXPERT_1] == 0


class TestVerifiedExpert:
    @pytest.mark.asyncio
    async def test_needs_both_directory_flag_and_expertise(self, db, directory, target, more_experts):
        await grant(db, EXPERT_1, target.area_id, target.tag_id)
        await grant(db, UNVERIFIED, target.area_id, target.tag_id)

        assert await expertise_index.is_verified_expert(db, directory, EXPERT_1) is True
        assert await expertise_index.is_verified_expert(db, directory, EXPERT_2) is False
        assert await expertise_index.is_verified_expert(db, directory, UNVERIFIED) is False
        assert await expertise_index.is_verified_expert(db, directory, ASKER) is False

    @pytest.mark.asyncio
    async def test_batch_check_matches_ranking(self, db, directory, target, more_experts):
        await grant(db, EXPERT_1, target.area_id, target.tag_id)
        await grant(db, EXPERT_4, target.area_id, None, "secondary")
        await grant(db, UNVERIFIED, target.area_id, target.tag_id)
        directory.add(EXPERT_4, verified=False)

        verified = await expertise_index.verified_experts(
            db, directory, [EXPERT_1, EXPERT_2, EXPERT_4, UNVERIFIED]
        )
        ranked = await expertise_index.candidates(db, directory, target.area_id, target.tag_id)

        assert verified == {EXPERT_1}
        assert ranked == [EXPERT_1]
        assert await expertise_index.verified_experts(db, directory, []) == set()


class TestAdministration:
    @pytest.mark.asyncio
    async def test_regrant_updates_level_in_place(self, db, target):
        await grant(db, EXPERT_1, target.area_id, None, "secondary")
        await grant(db, EXPERT_1, target.area_id, None, "primary")

        rows = await expertise_index.list_expertise(db, area_id=target.area_id)

        assert len(rows) == 1
        assert rows[0].level == "primary"

    @pytest.mark.asyncio
    async def test_tag_must_belong_to_area(self, db, target):
        with pytest.raises(ValidationError):
            await grant(db, EXPERT_1, target.area_id, target.other_area_tag_id)

    @pytest.mark.asyncio
    async def test_unknown_level_rejected(self, db, target):
        with pytest.raises(ValidationError):
            await grant(db, EXPERT_1, target.area_id, target.tag_id, "tertiary")

    @pytest.mark.asyncio
    async def test_revoke(self, db, directory, target):
        await grant(db, EXPERT_1, target.area_id, target.tag_id)

        await expertise_index.revoke_expertise(db, EXPERT_1, target.area_id, target.tag_id)

        assert await expertise_index.list_expertise(db) == []
        assert await expertise_index.candidates(db, directory, target.area_id, target.tag_id) == []

    @pytest.mark.asyncio
    async def test_revoke_missing_grant(self, db, target):
        with pytest.raises(NotFoundError):
            await expertise_index.revoke_expertise(db, EXPERT_1, target.area_id, None)
