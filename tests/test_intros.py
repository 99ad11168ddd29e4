"""Tests for accept/pass, idempotent introductions, and expiry."""
import asyncio
from datetime import timedelta

import pytest

from matchmaker.domain import MatchCandidate, MatchRecord, utcnow
from matchmaker.errors import Conflict, NotFound, ValidationFailed
from matchmaker.intros import IntroductionService
from matchmaker.match_store import InMemoryMatchStore
from matchmaker.notifications import Notifier


def candidate(candidate_id, reasons=("Both seeking collaboration", "You both mentioned beekeeping")):
    return MatchCandidate(
        candidate_id=candidate_id,
        similarity_score=0.92,
        diversity_score=0.3,
        final_score=0.734,
        reasons=list(reasons),
    )


class FailingNotifier(Notifier):
    async def notify_mutual_intro(self, recipient, other_party, shared_interest, context):
        raise RuntimeError("mail relay unavailable")


class YieldingMatchStore(InMemoryMatchStore):
    """Suspends before every write so concurrent callers interleave."""

    async def insert_if_absent(self, match):
        await asyncio.sleep(0)
        return await super().insert_if_absent(match)

    async def compare_and_set(self, match_id, expected, new, now=None):
        await asyncio.sleep(0)
        return await super().compare_and_set(match_id, expected, new, now)

    async def insert_intro_if_absent(self, intro):
        await asyncio.sleep(0)
        return await super().insert_intro_if_absent(intro)


@pytest.fixture
async def pair(seed):
    await seed("alice")
    await seed("bob")


@pytest.fixture
def intros(services):
    return services.intros


class TestAccept:

    async def test_first_accept_opens_the_match(self, intros, match_store, notifier, pair):
        result = await intros.accept("alice", candidate("bob"))

        assert result.status == "accepted"
        assert result.intro_id is None
        match = await match_store.get(result.match_id)
        assert match.status == "accepted_by_one"
        assert (match.user_a_id, match.user_b_id) == ("alice", "bob")
        assert match.initiator_id == "alice"
        assert match.final_score == pytest.approx(0.734)
        assert match.shared_interest == "Both seeking collaboration"
        assert match.expires_at - match.created_at == timedelta(days=7)
        assert notifier.sent == []

    async def test_second_accept_is_mutual_and_introduces(self, intros, match_store, notifier, pair):
        first = await intros.accept("bob", candidate("alice"))
        second = await intros.accept("alice", candidate("bob"))

        assert second.status == "mutual"
        assert second.match_id == first.match_id
        assert second.intro_id is not None
        assert (await match_store.get(first.match_id)).status == "mutual"

        recipients = {(r.user_id, o.user_id) for r, o, _, _ in notifier.sent}
        assert recipients == {("alice", "bob"), ("bob", "alice")}
        _, other, shared_interest, context = notifier.sent[0]
        assert other.email.endswith("@acme.com")
        assert shared_interest == "Both seeking collaboration"
        assert context == "Both seeking collaboration. You both mentioned beekeeping"

    async def test_repeated_accepts_are_idempotent(self, intros, notifier, pair):
        first = await intros.accept("alice", candidate("bob"))
        again = await intros.accept("alice", candidate("bob"))
        assert (again.status, again.match_id) == ("accepted", first.match_id)

        mutual = await intros.accept("bob", candidate("alice"))
        repeat = await intros.accept("bob", candidate("alice"))
        assert repeat.status == "mutual"
        assert repeat.intro_id == mutual.intro_id
        assert len(notifier.sent) == 2

    async def test_initiator_cannot_pass_after_accepting(self, intros, pair):
        await intros.accept("alice", candidate("bob"))
        with pytest.raises(Conflict):
            await intros.pass_match("alice", candidate("bob"))

    async def test_pass_on_mutual_conflicts(self, intros, pair):
        await intros.accept("alice", candidate("bob"))
        await intros.accept("bob", candidate("alice"))
        with pytest.raises(Conflict):
            await intros.pass_match("alice", candidate("bob"))

    async def test_self_action(self, intros, pair):
        with pytest.raises(ValidationFailed):
            await intros.accept("alice", candidate("alice"))

    async def test_unknown_candidate(self, intros, match_store, pair):
        with pytest.raises(NotFound):
            await intros.accept("alice", candidate("ghost"))
        assert await match_store.get_by_pair("alice", "ghost") is None

    async def test_empty_reasons(self, intros, match_store, pair):
        result = await intros.accept("alice", candidate("bob", reasons=()))
        match = await match_store.get(result.match_id)
        assert match.shared_interest is None
        assert match.context is None


class TestPass:

    async def test_first_pass_closes_the_pair(self, intros, match_store, pair):
        result = await intros.pass_match("alice", candidate("bob"))

        assert result.status == "passed"
        match = await match_store.get(result.match_id)
        assert match.status == "passed"
        assert match.expires_at is None

    async def test_second_user_passes_on_pending_accept(self, intros, match_store, notifier, pair):
        await intros.accept("alice", candidate("bob"))
        result = await intros.pass_match("bob", candidate("alice"))

        assert result.status == "passed"
        assert (await match_store.get(result.match_id)).status == "passed"
        assert notifier.sent == []

    async def test_pass_is_idempotent_and_final(self, intros, pair):
        first = await intros.pass_match("alice", candidate("bob"))
        assert (await intros.pass_match("bob", candidate("alice"))).match_id == first.match_id
        with pytest.raises(Conflict):
            await intros.accept("bob", candidate("alice"))


class TestConcurrentAccepts:

    async def test_both_sides_at_once(self, intros, match_store, notifier, pair):
        results = await asyncio.gather(
            intros.accept("alice", candidate("bob")),
            intros.accept("bob", candidate("alice")),
        )

        assert {r.status for r in results} == {"accepted", "mutual"}
        assert len({r.match_id for r in results}) == 1
        match = await match_store.get_by_pair("bob", "alice")
        assert match.status == "mutual"
        assert await match_store.get_intro_by_match(match.id) is not None
        assert len(notifier.sent) == 2

    async def test_many_racing_accepts(self, intros, match_store, notifier, pair):
        calls = [intros.accept("alice", candidate("bob")) for _ in range(5)]
        calls += [intros.accept("bob", candidate("alice")) for _ in range(5)]
        results = await asyncio.gather(*calls)

        assert len({r.match_id for r in results}) == 1
        intro_ids = {r.intro_id for r in results if r.intro_id}
        assert len(intro_ids) == 1
        assert len(notifier.sent) == 2
        assert len(await match_store.list_intros_for_user("alice", ("mutual",))) == 1

    async def test_interleaved_writes(self, directory, notifier, pair):
        store = YieldingMatchStore()
        intros = IntroductionService(store, directory, notifier)

        results = await asyncio.gather(
            *(intros.accept(user, candidate(other)) for user, other in [("alice", "bob"), ("bob", "alice")] * 3)
        )

        match = await store.get_by_pair("alice", "bob")
        assert match.status == "mutual"
        assert {r.match_id for r in results} == {match.id}
        assert "mutual" in {r.status for r in results}
        assert len({r.intro_id for r in results if r.intro_id}) == 1
        assert len(notifier.sent) == 2


class TestCreateIntroduction:

    async def test_is_idempotent(self, intros, notifier, pair):
        await intros.accept("alice", candidate("bob"))
        mutual = await intros.accept("bob", candidate("alice"))

        again = await intros.create_introduction(mutual.match_id)
        once_more = await intros.create_introduction(mutual.match_id)

        assert again.id == once_more.id == mutual.intro_id
        assert len(notifier.sent) == 2
        assert [r.user_id for r, *_ in notifier.sent].count("alice") == 1

    async def test_requires_a_mutual_match(self, intros, pair):
        pending = await intros.accept("alice", candidate("bob"))
        with pytest.raises(Conflict):
            await intros.create_introduction(pending.match_id)
        with pytest.raises(NotFound):
            await intros.create_introduction("missing")

    async def test_notification_failure_keeps_the_intro(self, match_store, directory, pair):
        intros = IntroductionService(match_store, directory, FailingNotifier())
        await intros.accept("alice", candidate("bob"))

        result = await intros.accept("bob", candidate("alice"))

        assert result.status == "mutual"
        assert await match_store.get_intro(result.intro_id) is not None

    async def test_missing_member_keeps_the_intro(self, intros, match_store, notifier, pair):
        match, _ = await match_store.insert_if_absent(
            MatchRecord(user_a_id="alice", user_b_id="departed", initiator_id="alice", status="mutual")
        )

        intro = await intros.create_introduction(match.id)

        assert (await match_store.get_intro_by_match(match.id)).id == intro.id
        assert notifier.sent == []


class TestActiveIntros:

    async def test_both_parties_see_the_intro(self, intros, pair):
        await intros.accept("alice", candidate("bob"))
        mutual = await intros.accept("bob", candidate("alice"))

        for user_id, other in (("alice", "bob"), ("bob", "alice")):
            views = await intros.get_active_intros(user_id)
            assert [v.id for v in views] == [mutual.intro_id]
            assert views[0].other_party.user_id == other
            assert views[0].interests == ["Both seeking collaboration", "You both mentioned beekeeping"]
            assert views[0].status == "mutual"

    async def test_newest_first(self, intros, match_store, seed, pair):
        await seed("carol")
        intro_ids = {}
        for other in ("bob", "carol"):
            await intros.accept("alice", candidate(other))
            intro_ids[other] = (await intros.accept(other, candidate("alice"))).intro_id
        older = await match_store.get_intro(intro_ids["bob"])
        older.created_at -= timedelta(minutes=1)

        views = await intros.get_active_intros("alice")
        assert [v.other_party.user_id for v in views] == ["carol", "bob"]

    async def test_completed_intros_drop_out(self, intros, pair):
        await intros.accept("alice", candidate("bob"))
        mutual = await intros.accept("bob", candidate("alice"))

        await intros.complete_introduction(mutual.intro_id, "bob")

        assert await intros.get_active_intros("alice") == []

    async def test_complete_unknown_intro(self, intros):
        with pytest.raises(NotFound):
            await intros.complete_introduction("missing", "alice")

    async def test_only_members_can_complete(self, intros, seed, pair):
        await seed("mallory")
        await intros.accept("alice", candidate("bob"))
        mutual = await intros.accept("bob", candidate("alice"))

        with pytest.raises(NotFound):
            await intros.complete_introduction(mutual.intro_id, "mallory")

        views = await intros.get_active_intros("alice")
        assert [v.status for v in views] == ["mutual"]


class TestExpiry:

    async def test_accepting_an_elapsed_match_expires_it(self, intros, match_store, notifier, pair):
        pending = await intros.accept("alice", candidate("bob"))
        match = await match_store.get(pending.match_id)
        match.expires_at = utcnow() - timedelta(seconds=1)

        with pytest.raises(Conflict, match="expired"):
            await intros.accept("bob", candidate("alice"))

        assert (await match_store.get(pending.match_id)).status == "expired"
        assert notifier.sent == []
        with pytest.raises(Conflict):
            await intros.pass_match("bob", candidate("alice"))

    async def test_sweep(self, intros, match_store, seed, pair):
        await seed("carol")
        pending = await intros.accept("alice", candidate("bob"))
        await intros.pass_match("alice", candidate("carol"))

        later = utcnow() + timedelta(days=8)
        assert await intros.expire_stale_matches(later) == 1
        assert (await match_store.get(pending.match_id)).status == "expired"
        assert await intros.expire_stale_matches(later) == 0

    async def test_sweep_leaves_fresh_matches(self, intros, pair):
        await intros.accept("alice", candidate("bob"))
        assert await intros.expire_stale_matches() == 0

    async def test_expiry_can_be_disabled(self, match_store, directory, notifier, pair):
        intros = IntroductionService(match_store, directory, notifier)
        intros.match_ttl = None

        result = await intros.accept("alice", candidate("bob"))

        assert (await match_store.get(result.match_id)).expires_at is None
