"""Keyword-based query intent classification.

Maps a free-text question to at most one knowledge category. Categories are
scanned in a fixed order so a query that mentions several topics always
resolves the same way.
"""

import re
from typing import Optional

from portfolio_ai.knowledge.models import Category, QueryIntent

# Order matters: the first category with a keyword hit wins.
INTENT_RULES: tuple[tuple[Category, tuple[str, ...]], ...] = (
    (
        Category.SKILLS,
        (
            "skill",
            "technolog",
            "tech stack",
            "stack",
            "framework",
            "programming",
            "language",
            "tool",
            "frontend",
            "front-end",
            "backend",
            "back-end",
            "database",
            "library",
            "coding",
            "react",
            "next.js",
            "typescript",
            "javascript",
            "python",
            "node",
        ),
    ),
    (
        Category.EXPERIENCE,
        (
            "experience",
            "work",
            "job",
            "career",
            "position",
            "role",
            "employ",
            "professional",
            "company",
            "companies",
        ),
    ),
    (
        Category.PROJECTS,
        (
            "project",
            "built",
            "build",
            "created",
            "developed",
            "portfolio",
            "app",
            "application",
            "website",
            "open source",
            "open-source",
        ),
    ),
    (
        Category.EDUCATION,
        (
            "education",
            "degree",
            "university",
            "college",
            "study",
            "studied",
            "course",
            "school",
            "academic",
            "self-taught",
            "learn",
        ),
    ),
    (
        Category.ACHIEVEMENTS,
        (
            "achievement",
            "award",
            "accomplish",
            "certificat",
            "hackathon",
            "recogni",
            "prize",
            "milestone",
        ),
    ),
    (
        Category.CONTACT,
        (
            "contact",
            "reach",
            "email",
            "e-mail",
            "phone",
            "hire",
            "hiring",
            "available",
            "availability",
            "linkedin",
            "github",
            "social",
            "get in touch",
        ),
    ),
    (
        Category.PERSONAL,
        (
            "who",
            "about",
            "name",
            "bio",
            "introduc",
            "personal",
            "hobby",
            "hobbies",
            "interest",
            "passion",
            "background",
            "yourself",
            "located",
            "location",
            "based",
        ),
    ),
)

# Keywords match at the start of a word, so "work" does not fire on "frameworks".
_COMPILED_RULES: tuple[tuple[Category, tuple[tuple[str, re.Pattern[str]], ...]], ...] = tuple(
    (
        category,
        tuple((keyword, re.compile(r"\b" + re.escape(keyword))) for keyword in keywords),
    )
    for category, keywords in INTENT_RULES
)


def detect_intent(query: str) -> QueryIntent:
    """Classify a query and report which keywords triggered the match."""
    if not isinstance(query, str) or not query.strip():
        return QueryIntent()

    query_lower = query.lower()
    for category, patterns in _COMPILED_RULES:
        matched = [keyword for keyword, pattern in patterns if pattern.search(query_lower)]
        if matched:
            return QueryIntent(category=category, keywords=matched)

    return QueryIntent()


def classify(query: str) -> Optional[Category]:
    """Return the query's category, or None when nothing matches (no bias)."""
    return detect_intent(query).category
