import pytest

from resolution.text import KeywordIntentClassifier, KeywordSpecificityClassifier, normalize_text, tokenize


def test_normalize_text():
    assert normalize_text("  Hello\u3000  World\n") == "hello world"


def test_tokenize_mixed_script():
    assert tokenize("order 42 中文字") == ["order", "42", "中文", "文字"]


class TestSpecificity:
    """Tests for deciding between honest no-match and clarification."""

    @pytest.mark.parametrize(
        "message",
        ["what is this", "Is it free?", "tell me about your refund terms", "WHERE is it"],
    )
    def test_specific(self, message):
        assert KeywordSpecificityClassifier().is_specific_question(message) is True

    @pytest.mark.parametrize("message", ["asdkjasd", "blue banana", "thanks a lot"])
    def test_not_specific(self, message):
        assert KeywordSpecificityClassifier().is_specific_question(message) is False


class TestIntentClassifier:
    """Tests for the keyword intent classifier."""

    def test_greeting(self):
        match = KeywordIntentClassifier().classify("hello")
        assert match.intent == "greeting"
        assert match.confidence == pytest.approx(0.4)

    def test_escalation(self):
        assert KeywordIntentClassifier().classify("I want to talk to a human agent").intent == "escalation"

    def test_general_when_nothing_scores(self):
        match = KeywordIntentClassifier().classify("qwerty zxcv")
        assert match.intent == "general"
        assert match.confidence == 0.3

    def test_ties_keep_earlier_intent(self):
        intents = (
            ("first", ("alpha",), (), 0.9),
            ("second", ("alpha",), (), 0.9),
        )
        assert KeywordIntentClassifier(intents, baseline=0.0).classify("alpha").intent == "first"

    def test_ceiling_caps_score(self):
        intents = (("capped", ("a", "b", "c"), (r"a", r"b"), 0.5),)
        match = KeywordIntentClassifier(intents, baseline=0.0).classify("a b c")
        assert match.confidence == 0.5
