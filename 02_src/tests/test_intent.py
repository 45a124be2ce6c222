"""Tests for IntentClassifier."""

import pytest

from concierge.agents.intent import IntentCategory, IntentClassifier, IntentRule


@pytest.fixture
def classifier():
    return IntentClassifier()


class TestClassify:
    """Tests for rule-based classification."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("你好", IntentCategory.CHITCHAT),
            ("Hello there", IntentCategory.CHITCHAT),
            ("今天天气怎么样", IntentCategory.CHITCHAT),
            ("门票多少钱", IntentCategory.PRICE_QUERY),
            ("东里村在哪", IntentCategory.LOCATION_QUERY),
            ("几点开门", IntentCategory.TIME_QUERY),
            ("卫生间", IntentCategory.FACILITY_QUERY),
            ("有什么表演", IntentCategory.EVENT_QUERY),
            ("讲个故事", IntentCategory.OTHER_QUERY),
        ],
    )
    def test_categories(self, classifier, text, expected):
        assert classifier.classify(text) == expected.value

    def test_rule_order_decides(self, classifier):
        """Test that the first matching rule wins when several match."""
        # both a price keyword and a location keyword
        assert classifier.classify("门票在哪买") == IntentCategory.PRICE_QUERY.value

    def test_custom_rules(self):
        rules = (IntentRule("PARKING", keywords=("停车",)),)

        assert IntentClassifier(rules).classify("哪里停车") == "PARKING"
        assert IntentClassifier(rules).classify("你好") == IntentCategory.OTHER_QUERY.value


class TestRefine:
    """Tests for question refinement."""

    def test_keeps_window_around_keyword(self, classifier):
        text = "a b c d 在哪 e f g h"

        refined = classifier.refine(text, IntentCategory.LOCATION_QUERY.value)

        assert refined == "c d 在哪 e f"

    def test_unrefined_category_strips_trailing_punctuation(self, classifier):
        assert classifier.refine("卫生间！！ ", IntentCategory.FACILITY_QUERY.value) == "卫生间"

    def test_no_keyword_falls_back_to_strip(self, classifier):
        assert classifier.refine("讲个故事。", IntentCategory.PRICE_QUERY.value) == "讲个故事"

    def test_unknown_category(self, classifier):
        assert classifier.refine("随便问问?", "SOMETHING_ELSE") == "随便问问?"
