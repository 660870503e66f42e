"""
Unit tests for ProfileDAO.

WHAT: Case-insensitive lookup and the admin member search.
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.profile import ProfileDAO
from app.models.profile import ProfileSubscriptionStatus
from tests.factories import ProfileFactory


class TestGetByEmail:
    @pytest.mark.asyncio
    async def test_lookup_ignores_case(self, db_session: AsyncSession):
        profile = await ProfileFactory.create(db_session, email="jane@example.com")

        found = await ProfileDAO(db_session).get_by_email("  Jane@Example.COM ")

        assert found.id == profile.id


class TestSearchMembers:
    """Tests for ProfileDAO.search_members."""

    @pytest.mark.asyncio
    async def test_newest_first_with_total(self, db_session: AsyncSession):
        for index in range(3):
            await ProfileFactory.create(db_session, email=f"m{index}@example.com")

        profiles, total = await ProfileDAO(db_session).search_members(skip=0, limit=2)

        assert total == 3
        assert [p.email for p in profiles] == ["m2@example.com", "m1@example.com"]

    @pytest.mark.asyncio
    async def test_search_matches_email_or_name(self, db_session: AsyncSession):
        await ProfileFactory.create(db_session, email="satoshi@example.com", name="S. N.")
        await ProfileFactory.create(db_session, email="hal@example.com", name="Hal Finney")
        await ProfileFactory.create(db_session, email="other@example.com", name="Other")
        dao = ProfileDAO(db_session)

        by_email, _ = await dao.search_members(search="SATOSHI")
        by_name, total = await dao.search_members(search="finney")

        assert [p.email for p in by_email] == ["satoshi@example.com"]
        assert [p.email for p in by_name] == ["hal@example.com"]
        assert total == 1

    @pytest.mark.asyncio
    async def test_filter_by_subscription_status(self, db_session: AsyncSession):
        await ProfileFactory.create(
            db_session,
            email="paying@example.com",
            subscription_status=ProfileSubscriptionStatus.ACTIVE,
        )
        await ProfileFactory.create(db_session, email="free@example.com")

        profiles, total = await ProfileDAO(db_session).search_members(
            subscription_status=ProfileSubscriptionStatus.ACTIVE,
        )

        assert total == 1
        assert profiles[0].email == "paying@example.com"
