# tests/test_chain_walker.py
"""
Tests for SponsorChainWalker.
"""
import pytest

from config import Config
from models import Member
from mlm_system.utils.chain_walker import SponsorChainWalker


class TestChain:

    @pytest.mark.asyncio
    async def test_nearest_first_excludes_start(self, session, register, creator):
        a = await register("a")
        b = await register("b", a)
        c = await register("c", b)

        chain = SponsorChainWalker(session).chain(c)
        assert [m.memberID for m in chain] == [b.memberID, a.memberID, creator.memberID]

    @pytest.mark.asyncio
    async def test_max_depth_bound(self, session, register):
        current = await register("m0")
        for i in range(1, 20):
            current = await register(f"m{i}", current)

        walker = SponsorChainWalker(session)
        assert len(walker.chain(current)) == 15
        assert len(walker.chain(current, max_depth=3)) == 3

    def test_root_has_empty_chain(self, session, creator):
        assert SponsorChainWalker(session).chain(creator) == []

    def test_cycle_safe(self, session, creator):
        x = Member(username="x", sponsorID=creator.memberID)
        y = Member(username="y", sponsorID=creator.memberID)
        session.add_all([x, y])
        session.flush()
        x.sponsorID = y.memberID
        y.sponsorID = x.memberID
        session.flush()

        chain = SponsorChainWalker(session).chain(x)
        assert [m.memberID for m in chain] == [y.memberID]

    @pytest.mark.asyncio
    async def test_walk_upline_stops_on_false(self, session, register):
        a = await register("a")
        b = await register("b", a)
        c = await register("c", b)

        seen = []

        def visit(ancestor, level):
            seen.append((ancestor.memberID, level))
            return level < 2

        processed = SponsorChainWalker(session).walk_upline(c, visit)
        assert processed == 2
        assert seen == [(b.memberID, 1), (a.memberID, 2)]


class TestDesignatedMembers:

    def test_creator_and_root(self, session, creator):
        walker = SponsorChainWalker(session)
        assert walker.get_creator_member().memberID == creator.memberID
        assert walker.get_root_member().memberID == creator.memberID

    def test_root_by_username(self, session, creator):
        root = Member(username="house", sponsorID=creator.memberID)
        session.add(root)
        session.flush()
        Config.set(Config.ROOT_USERNAME, "house")

        assert SponsorChainWalker(session).get_root_member().memberID == root.memberID


class TestIntegrity:

    @pytest.mark.asyncio
    async def test_validate_chain_to_root(self, session, register):
        a = await register("a")
        b = await register("b", a)
        assert SponsorChainWalker(session).validate_chain_to_root(b.memberID) is True

    @pytest.mark.asyncio
    async def test_orphan_branches(self, session, register):
        await register("a")
        orphan = Member(username="orphan")
        session.add(orphan)
        session.flush()
        child = Member(username="orphan-child", sponsorID=orphan.memberID)
        session.add(child)
        session.flush()

        orphans = SponsorChainWalker(session).find_orphan_branches()
        assert orphans == {orphan.memberID, child.memberID}

    @pytest.mark.asyncio
    async def test_sponsor_code_mismatches(self, session, register):
        a = await register("a")
        b = await register("b", a)
        c = await register("c", a)
        c.sponsorCode = "someone-else"
        session.flush()

        mismatches = SponsorChainWalker(session).find_sponsor_code_mismatches()
        ids = [row["memberId"] for row in mismatches]

        assert c.memberID in ids
        assert b.memberID not in ids
        row = next(r for r in mismatches if r["memberId"] == c.memberID)
        assert row["expectedCode"] == "a"
        assert row["sponsorId"] == a.memberID
