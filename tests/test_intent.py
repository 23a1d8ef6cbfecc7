"""Tests for keyword intent classification."""

import pytest

from portfolio_ai.knowledge.intent import INTENT_RULES, classify, detect_intent
from portfolio_ai.knowledge.models import Category


class TestClassify:
    """Tests for classify()."""

    @pytest.mark.parametrize(
        "query, expected",
        [
            ("What frontend frameworks do you know?", Category.SKILLS),
            ("Where did Mai work before?", Category.EXPERIENCE),
            ("Show me something Mai has built", Category.PROJECTS),
            ("Which university did Mai attend?", Category.EDUCATION),
            ("Has Mai won any hackathon awards?", Category.ACHIEVEMENTS),
            ("How can I contact Mai?", Category.CONTACT),
            ("Who is Mai?", Category.PERSONAL),
        ],
    )
    def test_classifies_each_category(self, query: str, expected: Category):
        """Test a representative query for every category."""
        assert classify(query) == expected

    def test_first_category_in_rule_order_wins(self):
        """Test a query hitting skills and projects resolves to skills."""
        assert classify("What projects did you build with React?") == Category.SKILLS

    def test_case_insensitive(self):
        """Test keywords match regardless of case."""
        assert classify("REACT OR VUE?") == Category.SKILLS

    def test_keyword_matches_at_word_start_only(self):
        """Test 'work' inside 'frameworks' does not trigger experience."""
        intent = detect_intent("Which frameworks?")
        assert intent.category == Category.SKILLS
        assert "work" not in intent.keywords

    @pytest.mark.parametrize("query", ["asdkjfh qpwoeiruqwer", "", "   "])
    def test_no_match_returns_none(self, query: str):
        """Test absence of a match is None, not an error."""
        assert classify(query) is None

    def test_non_string_returns_none(self):
        """Test non-string input never raises."""
        assert classify(None) is None  # type: ignore[arg-type]
        assert classify(42) is None  # type: ignore[arg-type]


class TestDetectIntent:
    """Tests for detect_intent()."""

    def test_reports_matched_keywords_of_winning_category(self):
        """Test keywords come from the winning category only."""
        intent = detect_intent("What frontend frameworks do you know?")

        assert intent.category == Category.SKILLS
        assert intent.keywords == ["framework", "frontend"]

    def test_empty_intent_for_gibberish(self):
        """Test gibberish yields no category and no keywords."""
        intent = detect_intent("zzzz qqqq")

        assert intent.category is None
        assert intent.keywords == []

    def test_rule_order_is_fixed(self):
        """Test the scan order of categories."""
        assert [category for category, _ in INTENT_RULES] == [
            Category.SKILLS,
            Category.EXPERIENCE,
            Category.PROJECTS,
            Category.EDUCATION,
            Category.ACHIEVEMENTS,
            Category.CONTACT,
            Category.PERSONAL,
        ]
