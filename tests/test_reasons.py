"""Tests for match explanations."""
from matchmaker.domain import ConnectionType, ProfileData
from matchmaker.strategies.reasons import (
    FALLBACK_REASON,
    STOPWORDS,
    SharedTopicReasonGenerator,
    build_reasons,
    extract_shared_topics,
    tokenize,
)


def profile(niche, project, connection_type=ConnectionType.COLLABORATION, rabbit_hole=None, user_id="u"):
    return ProfileData(
        user_id=user_id,
        niche_interest=niche,
        project=project,
        connection_type=connection_type,
        rabbit_hole=rabbit_hole,
    )


class TestTokenize:

    def test_lowercases_and_strips_punctuation(self):
        assert tokenize("Hello, World! (urban-farming)") == ["hello", "world", "urban", "farming"]

    def test_drops_stopwords(self):
        assert tokenize("The garden and the bees through spring") == ["garden", "bees", "spring"]


class TestExtractSharedTopics:

    def test_reference_example(self):
        topics = extract_shared_topics(
            "I love building sustainable gardens",
            "I enjoy sustainable architecture",
        )
        assert topics == ["sustainable"]

    def test_short_words_and_stopwords_never_count(self):
        topics = extract_shared_topics(
            "about the art of code between",
            "about the art of code between",
        )
        assert topics == []
        assert not set(topics) & STOPWORDS

    def test_order_and_limit(self):
        text = "robotics welding circuits soldering firmware"
        assert extract_shared_topics(text, text) == ["robotics", "welding", "circuits"]
        assert extract_shared_topics(text, text, limit=1) == ["robotics"]

    def test_deduplicates(self):
        assert extract_shared_topics("pottery pottery glaze", "pottery kilns") == ["pottery"]


class TestBuildReasons:

    def test_all_three_reasons(self):
        source = profile(
            "Sustainable gardens",
            "Community compost",
            rabbit_hole="Mycorrhizal networks in forests",
        )
        candidate = profile(
            "Sustainable architecture",
            "Passive houses",
            rabbit_hole="How forests communicate",
        )
        assert build_reasons(source, candidate) == [
            "Both seeking collaboration",
            "You both mentioned sustainable",
            "Both exploring forests",
        ]

    def test_connection_type_label(self):
        source = profile("Jazz piano", "Recording", ConnectionType.KNOWLEDGE_EXCHANGE)
        candidate = profile("Birdwatching", "Field guide", ConnectionType.KNOWLEDGE_EXCHANGE)
        assert build_reasons(source, candidate) == ["Both seeking knowledge exchange"]

    def test_falls_back_when_nothing_is_shared(self):
        source = profile("Jazz piano", "Recording", ConnectionType.MENTORSHIP)
        candidate = profile("Birdwatching", "Field guide", ConnectionType.FRIENDSHIP)
        assert build_reasons(source, candidate) == [FALLBACK_REASON]

    def test_missing_profile_falls_back(self):
        assert build_reasons(None, profile("a", "b")) == [FALLBACK_REASON]

    def test_stopwords_never_appear(self):
        source = profile("Thinking about things", "Through the night", ConnectionType.MENTORSHIP)
        candidate = profile("About everything", "Through walls", ConnectionType.FRIENDSHIP)
        reasons = build_reasons(source, candidate)
        assert reasons == [FALLBACK_REASON]


class TestSharedTopicReasonGenerator:

    async def test_reads_profiles_from_directory(self, directory, seed):
        await seed("alice", niche_interest="Sustainable gardens", project="Compost")
        await seed("bob", niche_interest="Sustainable architecture", project="Passive houses")

        reasons = await SharedTopicReasonGenerator(directory).generate("alice", "bob")

        assert reasons == ["Both seeking collaboration", "You both mentioned sustainable"]

    async def test_candidate_without_profile(self, directory, seed):
        await seed("alice")
        await seed("bob", with_profile=False)
        assert await SharedTopicReasonGenerator(directory).generate("alice", "bob") == [FALLBACK_REASON]
