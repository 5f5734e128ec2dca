import pytest

from urgency import UrgencyLevel


@pytest.mark.parametrize(
    "minutes, expected",
    [
        (240, UrgencyLevel.RELAXED),
        (120, UrgencyLevel.RELAXED),
        (119, UrgencyLevel.NORMAL),
        (30, UrgencyLevel.NORMAL),
        (29, UrgencyLevel.ELEVATED),
        (10, UrgencyLevel.ELEVATED),
        (9, UrgencyLevel.URGENT),
        (5, UrgencyLevel.URGENT),
        (4, UrgencyLevel.CRITICAL),
        (-3, UrgencyLevel.CRITICAL),
    ],
)
def test_from_minutes(minutes, expected):
    assert UrgencyLevel.from_minutes(minutes) is expected


def test_from_seconds_truncates_to_whole_minutes():
    assert UrgencyLevel.from_seconds(299) is UrgencyLevel.CRITICAL
    assert UrgencyLevel.from_seconds(300) is UrgencyLevel.URGENT


def test_levels_are_ordered():
    assert sorted(UrgencyLevel) == [
        UrgencyLevel.RELAXED,
        UrgencyLevel.NORMAL,
        UrgencyLevel.ELEVATED,
        UrgencyLevel.URGENT,
        UrgencyLevel.CRITICAL,
    ]
    assert UrgencyLevel.CRITICAL > UrgencyLevel.ELEVATED


def test_only_critical_pulses():
    assert [level for level in UrgencyLevel if level.should_pulse] == [UrgencyLevel.CRITICAL]
    assert UrgencyLevel.URGENT.description == "Less than 10 minutes remaining"
