from __future__ import annotations

from datetime import datetime

import pytest
from common.utils import clean_labels, fold_case, normalize_whitespace, now_utc_iso

pytestmark = pytest.mark.unit


def test_normalize_whitespace_squashes_runs() -> None:
    assert normalize_whitespace("  Backend   Development \n") == "Backend Development"


def test_clean_labels_drops_blank_values_and_keeps_order_and_duplicates() -> None:
    assert clean_labels([" go ", "", "   ", "rust", "go"]) == ["go", "rust", "go"]


def test_fold_case_folds_beyond_ascii() -> None:
    assert fold_case("ÜBER Straße") == "über strasse"
    assert fold_case("100%_done") == "100%_done"
    assert fold_case(None) is None


def test_now_utc_iso_returns_parseable_utc_timestamp() -> None:
    parsed = datetime.fromisoformat(now_utc_iso())
    assert parsed.tzinfo is not None
    assert parsed.utcoffset() is not None
    assert parsed.utcoffset().total_seconds() == 0
