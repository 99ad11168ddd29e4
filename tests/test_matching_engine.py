"""Tests for the end-to-end matching pipeline over in-memory adapters."""
from unittest.mock import AsyncMock

import pytest

from matchmaker.config import settings
from matchmaker.domain import ConnectionType, GenerateMatchesRequest, MatchCandidate
from matchmaker.errors import MatchingError, NoEmbedding, PreconditionFailed

SAME = [1.0, 0.0, 0.0]
CLOSE = [0.9, 0.1, 0.0]
FAR = [0.0, 1.0, 0.0]


def request(user_id="alice", **kwargs):
    return GenerateMatchesRequest(user_id=user_id, **kwargs)


class TestGenerateMatches:

    async def test_source_without_embedding(self, services, seed):
        await seed("alice")
        await seed("bob", vector=SAME)

        with pytest.raises(NoEmbedding, match="must complete onboarding first"):
            await services.matching.generate_matches(request())

    async def test_never_returns_the_source(self, services, seed):
        await seed("alice", vector=SAME)
        await seed("bob", vector=SAME)

        response = await services.matching.generate_matches(request())

        ids = [m.candidate_id for m in response.matches]
        assert ids == ["bob"]
        assert response.metadata.total_candidates_considered == 1

    async def test_identical_embeddings(self, services, seed):
        await seed("alice", vector=SAME)
        await seed("bob", vector=SAME)

        match = (await services.matching.generate_matches(request())).matches[0]

        assert match.similarity_score == pytest.approx(1.0)
        assert match.final_score >= match.similarity_score * (1 - 0.3) - 1e-9
        assert match.reasons

    async def test_threshold_drops_dissimilar_candidates(self, services, seed):
        await seed("alice", vector=SAME)
        await seed("bob", vector=CLOSE)
        await seed("carol", vector=FAR)

        response = await services.matching.generate_matches(request())
        assert [m.candidate_id for m in response.matches] == ["bob"]

        response = await services.matching.generate_matches(request(min_similarity_score=0.0))
        assert {m.candidate_id for m in response.matches} == {"bob", "carol"}

    async def test_members_without_embeddings_are_not_candidates(self, services, seed):
        await seed("alice", vector=SAME)
        await seed("bob")

        response = await services.matching.generate_matches(request())
        assert response.matches == []
        assert response.metadata.total_candidates_considered == 0

    async def test_filters_and_metadata(self, services, directory, seed):
        await seed("alice", vector=SAME)
        await seed("bob", vector=SAME)
        await seed("blocked", vector=SAME)
        await seed("outsider", org_id="org-2", vector=SAME)
        directory.block("blocked", "alice")

        response = await services.matching.generate_matches(request())

        assert [m.candidate_id for m in response.matches] == ["bob"]
        assert response.metadata.total_candidates_considered == 2
        assert response.metadata.total_filtered == 1
        assert response.metadata.processing_time_ms >= 0

    async def test_pool_is_scoped_to_the_organization(self, services, seed):
        for i in range(settings.matching.candidate_pool_limit + 5):
            await seed(f"other-{i}", org_id="org-2", vector=SAME)
        await seed("alice", vector=SAME)
        await seed("bob", vector=SAME)

        response = await services.matching.generate_matches(request())

        assert [m.candidate_id for m in response.matches] == ["bob"]
        assert response.metadata.total_candidates_considered == 1

    async def test_inactive_members_are_skipped(self, services, directory, seed):
        from matchmaker.domain import UserStatus

        await seed("alice", vector=SAME)
        member = await seed("bob", vector=SAME)
        member.status = UserStatus.PAUSED

        response = await services.matching.generate_matches(request())
        assert response.matches == []

    async def test_limit_and_ordering(self, services, seed):
        await seed("alice", vector=SAME)
        for i in range(8):
            await seed(f"user-{i}", vector=[1.0, 0.05 * i, 0.0])

        response = await services.matching.generate_matches(request(limit=3))

        assert len(response.matches) == 3
        finals = [m.final_score for m in response.matches]
        assert finals == sorted(finals, reverse=True)
        assert [m.candidate_id for m in response.matches] == ["user-0", "user-1", "user-2"]

    async def test_default_limit(self, services, seed):
        await seed("alice", vector=SAME)
        for i in range(7):
            await seed(f"user-{i}", vector=SAME)

        response = await services.matching.generate_matches(request())
        assert len(response.matches) == 5

    async def test_diversity_breaks_similarity_order(self, services, seed):
        await seed("alice", vector=SAME)
        await seed("twin", vector=[1.0, 0.02, 0.0])
        await seed("mentor", vector=[1.0, 0.1, 0.0], connection_type=ConnectionType.MENTORSHIP)

        response = await services.matching.generate_matches(request())

        assert [m.candidate_id for m in response.matches] == ["mentor", "twin"]
        assert response.matches[0].diversity_score == pytest.approx(0.3)

    async def test_reasons_are_explained(self, services, seed):
        await seed("alice", vector=SAME, niche_interest="Sustainable gardens")
        await seed("bob", vector=SAME, niche_interest="Sustainable architecture")

        match = (await services.matching.generate_matches(request())).matches[0]
        assert "You both mentioned sustainable" in match.reasons

    async def test_acted_on_candidates_are_not_offered_again(self, services, seed):
        await seed("alice", vector=SAME)
        await seed("bob", vector=SAME)
        await seed("carol", vector=SAME)

        await services.intros.pass_match("alice", MatchCandidate(candidate_id="bob", similarity_score=1.0))
        await services.intros.accept("carol", MatchCandidate(candidate_id="alice", similarity_score=1.0))

        assert (await services.matching.generate_matches(request())).matches == []
        response = await services.matching.generate_matches(request("bob"))
        assert [m.candidate_id for m in response.matches] == ["carol"]

    async def test_source_without_profile(self, services, seed):
        await seed("alice", vector=SAME, with_profile=False)
        await seed("bob", vector=SAME)

        with pytest.raises(PreconditionFailed):
            await services.matching.generate_matches(request())

    async def test_unexpected_errors_are_wrapped(self, services, seed):
        await seed("alice", vector=SAME)
        await seed("bob", vector=SAME)
        services.matching.reason_generator = AsyncMock()
        services.matching.reason_generator.generate.side_effect = RuntimeError("boom")

        with pytest.raises(MatchingError, match="boom"):
            await services.matching.generate_matches(request())


class TestBatchAndHealth:

    async def test_batch_collects_failures(self, services, seed):
        await seed("alice", vector=SAME)
        await seed("bob", vector=SAME)
        await seed("carol")

        result = await services.matching.generate_batch_matches(
            ["alice", "bob", "carol"], batch_size=2, parallelism=2
        )

        assert result.total_users_processed == 2
        assert result.total_matches_generated == 2
        assert [f.user_id for f in result.failures] == ["carol"]
        assert "No embedding" in result.failures[0].error
        assert result.duration_ms >= 0

    async def test_health_check(self, services):
        report = await services.matching.health_check()
        assert report == {
            "status": "healthy",
            "strategies": {
                "filter": "CompositeFilter",
                "similarity": "VectorSimilarityStrategy",
                "ranking": "DiversityRankingStrategy",
            },
        }
