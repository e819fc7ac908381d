from __future__ import annotations

CATEGORIES = (
    "Frontend Development",
    "Backend Development",
    "DevOps",
    "Web Design",
    "Mobile Development",
    "Cloud Computing",
    "Database",
    "Security",
    "Best Practices",
    "Architecture",
)


def is_known_category(value: str) -> bool:
    return value in CATEGORIES
