"""Unit tests for duration parsing and best-attempt selection."""

import pytest

from lrs_analytics.attempts import (
    EPOCH,
    extract_score,
    get_actor_key,
    is_completed,
    parse_duration,
    parse_timestamp,
    positive_duration,
    select_best_attempt,
)

from conftest import make_statement


@pytest.mark.unit
class TestParseDuration:
    """Test cases for ISO-8601 duration parsing."""

    def test_hours_minutes_seconds(self):
        """Test a full duration."""
        assert parse_duration("PT1H30M45S") == 5445

    def test_minutes_only(self):
        """Test a minutes-only duration."""
        assert parse_duration("PT45M") == 2700

    def test_fractional_hours(self):
        """Test that fractional components are accepted."""
        assert parse_duration("PT1.5H") == 5400

    def test_fractional_seconds(self):
        """Test fractional seconds stay fractional."""
        assert parse_duration("PT2.5S") == 2.5

    def test_empty_string_is_zero(self):
        """Test that an empty duration is zero."""
        assert parse_duration("") == 0

    def test_missing_prefix_is_zero(self):
        """Test that a duration without PT is rejected as zero."""
        assert parse_duration("1H30M") == 0

    def test_none_is_zero(self):
        """Test that a missing duration is zero."""
        assert parse_duration(None) == 0


@pytest.mark.unit
class TestParseTimestamp:
    """Test cases for timestamp parsing."""

    def test_zulu_suffix(self):
        """Test that a trailing Z is read as UTC."""
        parsed = parse_timestamp("2025-11-15T10:00:00Z")
        assert parsed.year == 2025
        assert parsed.utcoffset().total_seconds() == 0

    def test_garbage_sorts_as_epoch(self):
        """Test that unparseable input becomes the epoch."""
        assert parse_timestamp("not a date") == EPOCH
        assert parse_timestamp(None) == EPOCH


@pytest.mark.unit
class TestSelectBestAttempt:
    """Test cases for best-attempt selection."""

    def test_empty_input_returns_none(self):
        """Test that no attempts gives None, not an exception."""
        assert select_best_attempt([]) is None

    def test_highest_score_wins(self):
        """Test that the highest raw score is selected."""
        low = make_statement(raw=40, timestamp="2025-11-16T10:00:00Z")
        high = make_statement(raw=90, timestamp="2025-11-15T10:00:00Z")
        assert select_best_attempt([low, high]) is high

    def test_tie_goes_to_latest_timestamp(self):
        """Test that equal scores are broken by the most recent timestamp."""
        older = make_statement(raw=80, timestamp="2025-11-15T10:00:00Z")
        newer = make_statement(raw=80, timestamp="2025-11-16T10:00:00Z")
        assert select_best_attempt([older, newer]) is newer
        assert select_best_attempt([newer, older]) is newer

    def test_scored_attempt_beats_unscored(self):
        """Test that an attempt without score never wins over a scored one."""
        unscored = make_statement(timestamp="2025-12-01T10:00:00Z")
        scored = make_statement(raw=0, timestamp="2025-11-01T10:00:00Z")
        assert select_best_attempt([unscored, scored]) is scored


@pytest.mark.unit
class TestStatementAccessors:
    """Test cases for score, completion and actor accessors."""

    def test_extract_score_prefers_raw(self):
        """Test raw over scaled."""
        assert extract_score(make_statement(raw=7, scaled=0.7)) == 7

    def test_extract_score_falls_back_to_scaled(self):
        """Test scaled when raw is absent."""
        assert extract_score(make_statement(scaled=0.5)) == 0.5

    def test_extract_score_missing(self):
        """Test that no score gives None."""
        assert extract_score(make_statement()) is None

    def test_is_completed_requires_true(self):
        """Test that only completion=True counts."""
        assert is_completed(make_statement(completion=True)) is True
        assert is_completed(make_statement(completion=False)) is False
        assert is_completed(make_statement()) is False

    def test_actor_key_from_mbox(self):
        """Test that mbox identifies an actor without account."""
        stmt = make_statement()
        stmt["actor"] = {"mbox": "mailto:ada@example.org"}
        assert get_actor_key(stmt) == "mailto:ada@example.org"

    def test_positive_duration_cap(self):
        """Test that durations above the cap count as zero."""
        stmt = make_statement(duration="PT25H")
        assert positive_duration(stmt) == 90000
        assert positive_duration(stmt, max_seconds=86400) == 0
