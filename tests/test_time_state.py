"""Tests for time state resolution."""
from datetime import datetime

import pytest

from selfie_generator.time_state import in_range, resolve_time_state

TIME_STATES = {
    "morning": {"range": "06:00-11:00", "scene": "kitchen"},
    "day": {"range": "11:00-18:00"},
    "night": {"range": "22:00-06:00"},
}


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 1, 1, hour, minute)


class TestInRange:
    @pytest.mark.parametrize(
        "minute, time_range, expected",
        [
            (6 * 60, "06:00-11:00", True),
            (11 * 60, "06:00-11:00", False),
            (23 * 60, "22:00-06:00", True),
            (3 * 60, "22:00-06:00", True),
            (12 * 60, "22:00-06:00", False),
            (12 * 60, "08:00-08:00", True),
        ],
    )
    def test_ranges(self, minute: int, time_range: str, expected: bool) -> None:
        assert in_range(minute, time_range) is expected


class TestResolveTimeState:
    def test_matching_range(self) -> None:
        resolved = resolve_time_state(TIME_STATES, at(7, 30))
        assert resolved.key == "morning"
        assert resolved.state["scene"] == "kitchen"

    def test_wraps_past_midnight(self) -> None:
        assert resolve_time_state(TIME_STATES, at(2)).key == "night"

    def test_no_match_uses_first_entry(self) -> None:
        assert resolve_time_state(TIME_STATES, at(19)).key == "morning"

    def test_empty_states_give_default(self) -> None:
        assert resolve_time_state({}, at(12)).key == "default"
        assert resolve_time_state(None, at(12)).key == "default"

    def test_malformed_ranges_are_skipped(self) -> None:
        states = {"broken": {"range": "noon"}, "day": {"range": "09:00-17:00"}}
        assert resolve_time_state(states, at(10)).key == "day"
