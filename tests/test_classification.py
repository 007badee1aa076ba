import pytest

from veritas.core.errors import ClassificationError
from veritas.ml.nlp.classification import KeywordClassifier


@pytest.fixture
def classifier():
    return KeywordClassifier()


class TestKeywordClassifier:

    async def test_themes_from_keywords(self, classifier):
        result = await classifier.classify("New carbon policy announced by the government")
        assert result.topics == ["politics", "climate"]

    async def test_sentiment_positive_and_negative(self, classifier):
        positive = await classifier.classify("Great progress, a real success")
        negative = await classifier.classify("A terrible crisis and a total failure")
        assert positive.sentiment.label == "positive" and positive.sentiment.score == 1.0
        assert negative.sentiment.label == "negative" and negative.sentiment.score == -1.0
        assert positive.sentiment.confidence == pytest.approx(0.9)

    async def test_neutral_text(self, classifier):
        result = await classifier.classify("The meeting is on Tuesday")
        assert result.sentiment.score == 0.0
        assert result.sentiment.label == "neutral"
        assert result.sentiment.confidence == pytest.approx(0.5)

    async def test_entities(self, classifier):
        result = await classifier.classify("@greenpeace joins #ClimateStrike with United Nations delegates")
        found = {(e.text, e.type) for e in result.entities}
        assert ("greenpeace", "mention") in found
        assert ("ClimateStrike", "hashtag") in found
        assert ("United Nations", "named_entity") in found

    async def test_toxicity(self, classifier):
        result = await classifier.classify("YOU ARE AN IDIOT!!!!!!")
        assert result.toxicity >= 0.5

    @pytest.mark.parametrize("text, expected", [
        ("The government announced a new policy on renewable energy and carbon emissions today.", "en"),
        ("Le gouvernement a annoncé aujourd'hui une nouvelle politique sur les énergies renouvelables.", "fr"),
        ("Die Regierung hat heute eine neue Politik für erneuerbare Energien angekündigt.", "de"),
    ])
    async def test_language_detection(self, classifier, text, expected):
        result = await classifier.classify(text)
        assert result.language == expected

    async def test_language_unknown_without_letters(self, classifier):
        result = await classifier.classify("12345 !!! ???")
        assert result.language is None

    async def test_batch_preserves_order(self, classifier):
        results = await classifier.batch_classify(["vaccine rollout", "inflation rises"])
        assert [r.topics for r in results] == [["health"], ["economy"]]

    async def test_none_raises(self, classifier):
        with pytest.raises(ClassificationError):
            await classifier.classify(None)

    async def test_custom_theme_families(self):
        classifier = KeywordClassifier(themes={"space": ["rocket", "orbit"]})
        result = await classifier.classify("Rocket reaches orbit")
        assert result.topics == ["space"]
