import argparse
import json

from . import config
from .models import parse_date
from .progress import ProgressStore
from .sync import PrimarySync, SecondarySync
from .transport import HttpTransport
from .widget import WidgetSnapshotStore


def _print_state(state):
    status = 'complete' if state.is_complete else f'{state.remaining} remaining'
    print(f"Day {state.day_number}: {state.completed}/{state.target} ({status})")


def build_parser():
    parser = argparse.ArgumentParser(prog='push365')
    sub = parser.add_subparsers(dest='cmd')

    sub.add_parser('today')

    log = sub.add_parser('log')
    log.add_argument('amount', type=int)

    sub.add_parser('undo')
    sub.add_parser('stats')

    history = sub.add_parser('history')
    history.add_argument('--all', action='store_true', help='every month since the program start')

    settings = sub.add_parser('settings')
    settings.add_argument('--mode', choices=['strict', 'flexible'])
    settings.add_argument('--notifications', choices=['on', 'off'])
    settings.add_argument('--reminder', metavar='HH:MM', help='evening reminder time')
    settings.add_argument('--name')

    onboard = sub.add_parser('onboard')
    onboard.add_argument('--start', help='program start date, YYYY-MM-DD (default today)')
    onboard.add_argument('--mode', choices=['strict', 'flexible'], default='flexible')
    onboard.add_argument('--name')

    reset = sub.add_parser('reset')
    reset.add_argument('--yes', action='store_true', help='skip the confirmation prompt')

    remote = sub.add_parser('remote', help='act as a secondary of the primary at PUSH365_PRIMARY_URL')
    remote.add_argument('action', choices=['today', 'log', 'undo'])
    remote.add_argument('amount', type=int, nargs='?', default=1)
    return parser


def run_remote(args, widget, transport=None):
    if transport is None:
        transport = HttpTransport(config.primary_url(), timeout=config.http_timeout())
    secondary = SecondarySync(transport, widget=widget, queue_path=config.queue_path())
    transport.check()
    secondary.activate()
    if secondary.day_state is None:
        # last snapshot seen, so the primary can be offline
        secondary.day_state = widget.load()
    if secondary.day_state is None:
        print('No state from the primary yet')
        return 1

    if args.action == 'log' and not secondary.log_pushups(args.amount):
        print('Today is already complete')
    elif args.action == 'undo' and not secondary.undo_last_log():
        print('Nothing to undo')
    _print_state(secondary.day_state)
    if secondary.pending:
        print(f"{len(secondary.pending)} action(s) queued until the primary is reachable")
    return 0


def main(argv=None, progress=None, widget=None, transport=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.cmd is None:
        parser.print_help()
        return 0

    if widget is None:
        widget = WidgetSnapshotStore(config.widget_dir())
    if args.cmd == 'remote':
        return run_remote(args, widget, transport)

    if progress is None:
        progress = ProgressStore(config.make_store(), tz=config.calendar_zone())
    primary = PrimarySync(progress, widget=widget)

    if args.cmd == 'today':
        _print_state(primary.current_state())
    elif args.cmd == 'log':
        _print_state(primary.log(args.amount))
    elif args.cmd == 'undo':
        _print_state(primary.undo())
    elif args.cmd == 'stats':
        for key, value in progress.stats().items():
            print(f"{key.replace('_', ' ')}: {value}")
    elif args.cmd == 'history':
        for month in progress.history(all_time=args.all):
            print(f"{month['year']}-{month['month']:02d}")
            for day in month['days']:
                if day['is_future'] or not day['tracked']:
                    continue
                mark = 'x' if day['is_complete'] else ' '
                print(f"  [{mark}] {day['date']} day {day['day_number']}: {day['completed']}/{day['target']}")
    elif args.cmd == 'settings':
        fields = {}
        if args.mode:
            fields['mode'] = args.mode
        if args.notifications:
            fields['notifications_enabled'] = args.notifications == 'on'
        if args.reminder:
            hour, _, minute = args.reminder.partition(':')
            fields['reminder_hour'], fields['reminder_minute'] = int(hour), int(minute or 0)
        if args.name is not None:
            fields['display_name'] = args.name
        settings = progress.update_settings(**fields) if fields else progress.get_or_create_settings()
        print(json.dumps(settings.to_dict(), indent=2))
    elif args.cmd == 'onboard':
        settings = progress.complete_onboarding(start_date=parse_date(args.start),
                                                mode=args.mode, display_name=args.name)
        print(f"Program starts {settings.program_start_date} in {settings.mode.value} mode")
        primary.push_state()
    elif args.cmd == 'reset':
        if not args.yes and input('Delete all progress? [y/N] ').strip().lower() != 'y':
            print('Cancelled')
            return 1
        primary.reset()
        print('Reset')
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
