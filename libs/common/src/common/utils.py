from __future__ import annotations

from datetime import UTC, datetime


def now_utc_iso() -> str:
    return datetime.now(UTC).isoformat()


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def clean_labels(values: list[str]) -> list[str]:
    return [normalize_whitespace(value) for value in values if value.strip()]


def fold_case(text: str | None) -> str | None:
    return text.casefold() if text is not None else None
