from datetime import date

from push365.models import ProgramSettings, ProgressMode
from push365.targets import preview_target, resolve_target


def test_strict_follows_day_number():
    s = ProgramSettings(program_start_date=date(2026, 1, 1), mode=ProgressMode.STRICT, last_completed_target=40)
    assert resolve_target(5, s) == 5
    assert resolve_target(0, s) == 1


def test_flexible_falls_back_to_day_number_before_first_completion():
    s = ProgramSettings(program_start_date=date(2026, 1, 1), mode=ProgressMode.FLEXIBLE)
    assert resolve_target(5, s) == 5


def test_flexible_climbs_from_last_completed_target():
    s = ProgramSettings(program_start_date=date(2026, 1, 1), mode=ProgressMode.FLEXIBLE,
                        last_completed_target=5)
    assert resolve_target(6, s) == 6
    assert resolve_target(30, s) == 6


def test_unknown_mode_is_treated_as_strict():
    s = ProgramSettings(program_start_date=date(2026, 1, 1), mode='weekly', last_completed_target=5)
    assert s.mode == ProgressMode.STRICT
    assert resolve_target(12, s) == 12


def test_preview_target():
    s = ProgramSettings(program_start_date=date(2026, 1, 1))
    assert preview_target(date(2026, 1, 10), s) == (10, 10)
    s.last_completed_target = 3
    assert preview_target(date(2026, 1, 10), s) == (10, 4)
