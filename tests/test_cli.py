from datetime import date

from push365.cli import main
from push365.sync import PrimarySync
from push365.transport import LoopbackTransport
from push365.widget import WidgetSnapshotStore


def run(argv, progress, tmp_path):
    widget = WidgetSnapshotStore(tmp_path / 'widget', reload_signal=lambda: None)
    return main(argv, progress=progress, widget=widget)


def test_log_and_today(progress, tmp_path, capsys):
    run(['onboard', '--start', '2025-12-27', '--mode', 'strict', '--name', 'Sam'], progress, tmp_path)
    run(['log', '4'], progress, tmp_path)
    run(['today'], progress, tmp_path)
    out = capsys.readouterr().out
    assert 'Program starts 2025-12-27 in strict mode' in out
    assert 'Day 6: 4/6 (2 remaining)' in out


def test_undo_and_stats(progress, tmp_path, capsys):
    run(['log', '1'], progress, tmp_path)
    run(['undo'], progress, tmp_path)
    run(['stats'], progress, tmp_path)
    out = capsys.readouterr().out
    assert 'Day 1: 0/1 (1 remaining)' in out
    assert 'lifetime total: 0' in out


def test_settings_flags(progress, tmp_path, capsys):
    run(['settings', '--mode', 'strict', '--notifications', 'off', '--reminder', '19:45'], progress, tmp_path)
    settings = progress.get_or_create_settings()
    assert settings.mode.value == 'strict'
    assert settings.notifications_enabled is False
    assert (settings.reminder_hour, settings.reminder_minute) == (19, 45)


def test_history_lists_tracked_days(progress, tmp_path, capsys):
    run(['log', '1'], progress, tmp_path)
    run(['history'], progress, tmp_path)
    out = capsys.readouterr().out
    assert '2026-01' in out
    assert '[x] 2026-01-01 day 1: 1/1' in out


def test_reset_needs_confirmation(progress, tmp_path, monkeypatch):
    run(['log', '1'], progress, tmp_path)
    monkeypatch.setattr('builtins.input', lambda prompt: 'n')
    assert run(['reset'], progress, tmp_path) == 1
    assert progress.get_or_create_day_record().completed == 1
    assert run(['reset', '--yes'], progress, tmp_path) == 0
    assert progress.get_or_create_day_record().completed == 0


def test_remote_log_through_primary(progress, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv('PUSH365_QUEUE', str(tmp_path / 'queue.json'))
    p_end, s_end = LoopbackTransport.pair(reachable=True)
    PrimarySync(progress, transports=[p_end])
    widget = WidgetSnapshotStore(tmp_path / 'secondary-widget', reload_signal=lambda: None)

    assert main(['remote', 'log', '1'], widget=widget, transport=s_end) == 0
    assert progress.get_or_create_day_record().completed == 1
    assert 'Day 1: 1/1 (complete)' in capsys.readouterr().out


def test_remote_offline_uses_cached_snapshot(progress, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv('PUSH365_QUEUE', str(tmp_path / 'queue.json'))
    progress.complete_onboarding(start_date=date(2025, 12, 30), mode='strict')
    widget = WidgetSnapshotStore(tmp_path / 'secondary-widget', reload_signal=lambda: None)
    widget.save(PrimarySync(progress).current_state())

    _, s_end = LoopbackTransport.pair(reachable=False)
    assert main(['remote', 'log', '2'], widget=widget, transport=s_end) == 0
    out = capsys.readouterr().out
    assert 'Day 3: 2/3 (1 remaining)' in out
    assert '1 action(s) queued' in out
    assert (tmp_path / 'queue.json').exists()


def test_remote_without_any_state(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv('PUSH365_QUEUE', str(tmp_path / 'queue.json'))
    widget = WidgetSnapshotStore(tmp_path / 'secondary-widget', reload_signal=lambda: None)
    _, s_end = LoopbackTransport.pair(reachable=False)
    assert main(['remote', 'today'], widget=widget, transport=s_end) == 1
    assert 'No state from the primary yet' in capsys.readouterr().out
