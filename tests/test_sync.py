from datetime import date, datetime, timezone

import pytest

from push365.storage import StoreError
from push365.sync import (ConnectionState, DayState, LogAction, PrimarySync, SecondarySync, UndoAction,
                          parse_action)
from push365.transport import LoopbackTransport, TransportError


def connect(progress, queue_path=None, reachable=True):
    p_end, s_end = LoopbackTransport.pair(reachable=reachable)
    primary = PrimarySync(progress, transports=[p_end])
    secondary = SecondarySync(s_end, queue_path=queue_path)
    secondary.activate()
    return primary, secondary, s_end


def day_ten(progress):
    # Jan 1 is day 10, target 10
    progress.complete_onboarding(start_date=date(2025, 12, 23), mode='strict')


def test_activate_pulls_initial_state(progress):
    day_ten(progress)
    _, secondary, _ = connect(progress)
    assert secondary.connection == ConnectionState.REACHABLE
    state = secondary.day_state
    assert (state.day_number, state.target, state.completed, state.remaining) == (10, 10, 0, 10)
    assert state.can_undo is False


def test_offline_log_is_optimistic_then_replaced(progress):
    day_ten(progress)
    primary, secondary, link = connect(progress)
    link.set_reachable(False)
    assert secondary.connection == ConnectionState.DISCONNECTED

    # the primary logs on its own while the secondary is away
    primary.log(4)
    assert secondary.log_pushups(10)
    assert secondary.day_state.completed == 10
    assert secondary.day_state.is_complete
    assert len(secondary.pending) == 1

    link.set_reachable(True)
    assert secondary.pending == []
    assert secondary.connection == ConnectionState.REACHABLE
    record = progress.get_or_create_day_record()
    assert record.completed == 10
    assert [e.amount for e in record.logs] == [4, 6]
    assert secondary.day_state.completed == 10
    assert secondary.day_state.can_undo is True
    assert secondary.day_state == secondary.authoritative


def test_reachable_log_round_trips_immediately(progress):
    day_ten(progress)
    _, secondary, _ = connect(progress)
    assert secondary.log_pushups(3)
    assert progress.get_or_create_day_record().completed == 3
    assert secondary.authoritative.completed == 3
    assert secondary.pending == []


def test_secondary_undo(progress):
    day_ten(progress)
    _, secondary, link = connect(progress)
    link.set_reachable(False)
    assert not secondary.undo_last_log()
    secondary.log_pushups(2)
    assert secondary.undo_last_log()
    assert secondary.day_state.completed == 1
    assert secondary.day_state.can_undo is True

    link.set_reachable(True)
    assert progress.get_or_create_day_record().completed == 0
    assert secondary.day_state.completed == 0
    assert secondary.day_state.can_undo is False


def test_log_ignored_when_day_complete_or_unknown(progress):
    p_end, s_end = LoopbackTransport.pair(reachable=False)
    secondary = SecondarySync(s_end)
    assert not secondary.log_pushups(5)
    assert secondary.pending == []

    PrimarySync(progress, transports=[p_end])
    s_end.set_reachable(True)
    secondary.activate()
    secondary.log_pushups(1)
    assert secondary.day_state.is_complete
    assert not secondary.log_pushups(1)


def test_primary_falls_back_to_transfer_when_unreachable(progress):
    day_ten(progress)
    primary, secondary, link = connect(progress)
    link.set_reachable(False)
    primary.log(2)
    primary.log(3)
    assert secondary.day_state.completed == 0

    link.set_reachable(True)
    assert secondary.day_state.completed == 5


def test_stale_state_is_ignored(progress):
    _, secondary, _ = connect(progress)
    newer = secondary.day_state
    older = DayState(day_number=1, target=1, completed=0, remaining=1, is_complete=False,
                     timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc), seq=newer.seq - 1)
    assert not secondary.receive(older.to_dict())
    assert secondary.day_state is newer

    again = DayState.from_dict(newer.to_dict())
    assert secondary.receive(newer.to_dict())
    assert secondary.day_state == again


@pytest.mark.parametrize('payload', [
    None,
    'hello',
    {'dayNumber': 'x', 'target': 1, 'completed': 0, 'remaining': 1, 'isComplete': False, 'timestamp': 0},
    {'dayNumber': 1, 'target': 1, 'completed': 0, 'remaining': 1, 'isComplete': 'no', 'timestamp': 0},
    {'dayNumber': 1, 'target': 1, 'completed': 0, 'remaining': 1, 'isComplete': False},
    {'dayNumber': 1, 'target': 1, 'completed': 0, 'remaining': 1, 'isComplete': False, 'timestamp': 10 ** 20},
])
def test_malformed_state_is_dropped(progress, payload):
    _, secondary, _ = connect(progress)
    before = secondary.day_state
    assert not secondary.receive(payload)
    assert secondary.day_state is before


def test_epoch_timestamp_accepted():
    state = DayState.from_dict({'dayNumber': 3, 'target': 3, 'completed': 1, 'remaining': 2,
                                'isComplete': False, 'timestamp': 1767225600})
    assert state.timestamp == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert state.can_undo is None
    assert 'canUndo' not in state.to_dict()


def test_malformed_action_is_rejected(progress):
    primary, _, _ = connect(progress)
    assert primary.handle_message({'type': 'log'}) == {'error': 'Invalid action'}
    assert primary.handle_message({'type': 'log', 'amount': '5'}) == {'error': 'Invalid action'}
    assert primary.handle_message({'type': 'jump'}) == {'error': 'Invalid action'}
    primary.handle_transfer({'amount': 3})
    assert progress.get_or_create_day_record().completed == 0


def test_action_aliases():
    assert isinstance(parse_action({'type': 'logPushups', 'amount': 2}), LogAction)
    assert isinstance(parse_action({'type': 'undoLastLog'}), UndoAction)
    assert parse_action({'type': 'log', 'amount': True}) is None


def test_resent_action_applied_once(progress):
    day_ten(progress)
    primary, _, _ = connect(progress)
    action = {'type': 'log', 'amount': 2, 'id': 'abc123'}
    primary.handle_message(action)
    reply = primary.handle_message(action)
    assert reply['completed'] == 2
    assert progress.get_or_create_day_record().completed == 2


def test_seq_grows_with_every_push(progress):
    primary, _, _ = connect(progress)
    first = primary.push_state().seq
    second = primary.push_state().seq
    assert second > first


def test_reset_clears_secondary(progress):
    primary, secondary, _ = connect(progress)
    secondary.log_pushups(1)
    primary.reset()
    assert secondary.day_state is None
    assert secondary.authoritative is None
    assert progress.get_or_create_day_record().completed == 0


def test_queue_survives_restart(progress, tmp_path):
    queue = tmp_path / 'queue.json'
    day_ten(progress)
    _, secondary, link = connect(progress, queue_path=queue)
    link.set_reachable(False)
    secondary.log_pushups(4)
    secondary.log_pushups(1)

    p_end, s_end = LoopbackTransport.pair(reachable=False)
    PrimarySync(progress, transports=[p_end])
    restarted = SecondarySync(s_end, queue_path=queue)
    assert [a.amount for a in restarted.pending] == [4, 1]

    s_end.set_reachable(True)
    assert restarted.pending == []
    assert progress.get_or_create_day_record().completed == 5


def test_send_failure_keeps_action_queued(progress):
    day_ten(progress)
    _, secondary, link = connect(progress)

    def refuse(payload):
        raise TransportError('radio off')

    link.send_message = refuse
    secondary.log_pushups(2)
    assert len(secondary.pending) == 1
    assert secondary.connection == ConnectionState.DISCONNECTED


def test_out_of_range_client_timestamp_uses_now():
    action = parse_action({'type': 'log', 'amount': 1, 'clientTimestamp': 10 ** 20})
    assert action.amount == 1
    assert action.client_timestamp.year >= 2026


def test_primary_failure_does_not_stall_queue(progress):
    day_ten(progress)
    _, secondary, link = connect(progress)
    real_add_log = progress.add_log
    calls = []

    def flaky(amount, when=None):
        calls.append(amount)
        if len(calls) == 1:
            raise StoreError('database is locked')
        return real_add_log(amount, when)

    progress.add_log = flaky
    secondary.log_pushups(1)
    assert secondary.connection == ConnectionState.DISCONNECTED
    assert len(secondary.pending) == 1

    secondary.log_pushups(1)
    assert secondary.pending == []
    assert secondary.connection == ConnectionState.REACHABLE
    assert progress.get_or_create_day_record().completed == 2
