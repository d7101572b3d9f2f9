"""
Tests for negative-intensity scoring, the warning rule and the calendar helpers.

Covered:
  - max / mean intensity methods and lookup by name
  - threshold boundary (inclusive) with the default threshold 0.6
  - dominant negative emotion
  - date / month bucketing in the display timezone
  - previous business day (Monday -> Friday)
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from emopulse.core.dates import date_month_for, is_weekday, previous_business_day, today_in
from emopulse.services.scoring import (
    assess,
    dominant_negative,
    get_intensity_fn,
    max_negative,
    mean_negative,
)
from tests.helpers import scores

TOKYO = ZoneInfo("Asia/Tokyo")
THRESHOLD = 0.6


class TestIntensity:
    def test_max_takes_strongest_negative(self):
        s = scores(anger=0.2, contempt=0.7, disgust=0.1)
        assert max_negative(s) == pytest.approx(0.7)

    def test_mean_averages_the_three_negatives(self):
        s = scores(anger=0.3, contempt=0.6, disgust=0.0)
        assert mean_negative(s) == pytest.approx(0.3)

    def test_positive_emotions_do_not_count(self):
        s = scores(joy=1.0, sad=0.9, fear=0.9, surprise=1.0, anger=0.0, contempt=0.0, disgust=0.0)
        assert max_negative(s) == 0.0
        assert mean_negative(s) == 0.0

    def test_lookup_by_name(self):
        assert get_intensity_fn("max") is max_negative
        assert get_intensity_fn("mean") is mean_negative

    def test_unknown_method_rejected(self):
        with pytest.raises(ValueError, match="median"):
            get_intensity_fn("median")

    def test_dominant_negative(self):
        assert dominant_negative(scores(anger=0.1, contempt=0.2, disgust=0.8)) == "disgust"

    def test_dominant_tie_prefers_anger(self):
        assert dominant_negative(scores(anger=0.5, contempt=0.5, disgust=0.5)) == "anger"


class TestWarningRule:
    def test_exam_failure_does_not_alert(self):
        # Sad and fearful, not hostile
        s = scores(sad=0.8, fear=0.7, anger=0.1, contempt=0.05, disgust=0.05)
        result = assess(s, THRESHOLD, max_negative)
        assert result.should_alert is False

    def test_angry_message_alerts(self):
        result = assess(scores(anger=0.75), THRESHOLD, max_negative)
        assert result.should_alert is True
        assert result.dominant == "anger"
        assert result.intensity == pytest.approx(0.75)

    def test_exactly_at_threshold_alerts(self):
        assert assess(scores(contempt=0.6), THRESHOLD, max_negative).should_alert is True

    def test_just_below_threshold_does_not_alert(self):
        assert assess(scores(contempt=0.59), THRESHOLD, max_negative).should_alert is False

    def test_mean_method_is_less_sensitive(self):
        s = scores(anger=0.75, contempt=0.1, disgust=0.1)
        assert assess(s, THRESHOLD, mean_negative).should_alert is False


class TestDates:
    def test_date_and_month_use_display_timezone(self):
        # 2023-11-14T22:13:20Z is already the 15th in Tokyo
        assert date_month_for(1700000000, TOKYO) == ("2023-11-15", "2023-11")
        assert date_month_for(1700000000, timezone.utc) == ("2023-11-14", "2023-11")

    def test_month_rolls_over_in_display_timezone(self):
        ts = int(datetime(2024, 1, 31, 15, 30, tzinfo=timezone.utc).timestamp())
        assert date_month_for(ts, TOKYO) == ("2024-02-01", "2024-02")

    def test_today_in_display_timezone(self):
        now = datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc)
        assert today_in(TOKYO, now=now) == date(2026, 10, 19)

    @pytest.mark.parametrize("today,expected", [
        (date(2026, 10, 19), date(2026, 10, 16)),  # Monday -> Friday
        (date(2026, 10, 20), date(2026, 10, 19)),  # Tuesday -> Monday
        (date(2026, 10, 16), date(2026, 10, 15)),  # Friday -> Thursday
        (date(2026, 10, 18), date(2026, 10, 16)),  # Sunday -> Friday
    ])
    def test_previous_business_day(self, today, expected):
        assert previous_business_day(today) == expected

    def test_weekend_detection(self):
        assert is_weekday(date(2026, 10, 16)) is True
        assert is_weekday(date(2026, 10, 17)) is False
        assert is_weekday(date(2026, 10, 18)) is False
