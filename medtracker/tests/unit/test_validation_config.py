# tests/unit/test_validation_config.py
import pytest

from medtracker.core.config_validation import validate_config


class CfgOk:
    TIMEZONE = "Europe/Kyiv"
    TAKEN_FORWARD_SKEW_S = 3600
    TAKEN_LOOKBACK_S = 7 * 24 * 3600
    OVERDUE_GRACE_S = 0
    LARGE_OFFSET_CHANGE_H = 12
    ADHERENCE_POLICY = "resolved_only"
    MISFIRE_GRACE_S = 300
    SCHEDULES = [
        {"id": "morning", "time": "08:00"},
        {"id": "weekdays", "time": "09:30", "days": ["mon", "tue", "wed", "thu", "fri"]},
    ]


def test_validate_ok():
    validate_config(CfgOk)


def test_shipped_config_is_valid():
    from medtracker import config as cfg

    validate_config(cfg)


def test_unknown_timezone_raises():
    class Cfg(CfgOk):
        TIMEZONE = "Europe/Atlantis"

    with pytest.raises(ValueError):
        validate_config(Cfg)


@pytest.mark.parametrize(
    "name,value",
    [
        ("TAKEN_FORWARD_SKEW_S", -1),
        ("LARGE_OFFSET_CHANGE_H", 0),
        ("MISFIRE_GRACE_S", "300"),
        ("TAKEN_LOOKBACK_S", True),
    ],
)
def test_bad_numbers_raise(name, value):
    Cfg = type("Cfg", (CfgOk,), {name: value})
    with pytest.raises(ValueError):
        validate_config(Cfg)


def test_unknown_adherence_policy_raises():
    class Cfg(CfgOk):
        ADHERENCE_POLICY = "optimistic"

    with pytest.raises(ValueError):
        validate_config(Cfg)


def test_schedule_without_days_raises():
    class Cfg(CfgOk):
        SCHEDULES = [{"id": "never", "time": "08:00", "days": []}]

    with pytest.raises(ValueError):
        validate_config(Cfg)


def test_duplicate_schedule_ids_raise():
    class Cfg(CfgOk):
        SCHEDULES = [
            {"id": "morning", "time": "08:00"},
            {"id": "morning", "time": "09:00"},
        ]

    with pytest.raises(ValueError):
        validate_config(Cfg)


def test_unknown_console_level_raises():
    class Cfg(CfgOk):
        CONSOLE_LOG_LEVEL = "LOUD"

    with pytest.raises(ValueError, match="CONSOLE_LOG_LEVEL"):
        validate_config(Cfg)
