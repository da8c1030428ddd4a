import os
import traceback
from datetime import date

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from . import config
from .progress import ProgressStore
from .reminders import completion_notice, plan_reminders
from .storage import StoreError
from .sync import PrimarySync
from .widget import WidgetSnapshotStore

app = Flask(__name__)
app.secret_key = os.environ.get('FLASK_SECRET_KEY', 'your-secret-key-change-this')
DEBUG_API = os.environ.get('PUSH365_DEBUG_API', '0') in {'1', 'true', 'True', 'yes'}

progress: ProgressStore = None
primary: PrimarySync = None


def configure(store=None, tz=None, clock=None, widget=None):
    """(Re)bind the primary this app serves. Defaults come from the environment."""
    global progress, primary
    progress = ProgressStore(store if store is not None else config.make_store(),
                             tz=tz if tz is not None else config.calendar_zone(),
                             clock=clock)
    if widget is None:
        widget = WidgetSnapshotStore(config.widget_dir())
    primary = PrimarySync(progress, widget=widget)
    return primary


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@app.before_request
def _log_request():
    if primary is None:
        configure()
    if DEBUG_API:
        print(f"[API] {request.method} {request.path} args={dict(request.args)} body={request.get_data(as_text=True)[:200]}")


@app.errorhandler(StoreError)
def _handle_store_error(e):
    print(f"[API] Store failure: {e}\n{traceback.format_exc()}")
    return jsonify({'error': 'Store failure', 'detail': str(e)}), 503


@app.errorhandler(ValueError)
def _handle_value_error(e):
    return jsonify({'error': 'Invalid request', 'detail': str(e)}), 400


@app.errorhandler(Exception)
def _handle_exception(e):
    if isinstance(e, HTTPException):
        return e
    # Centralized error logging to surface root cause instead of silent retries
    print(f"[API] Unhandled exception: {e}\n{traceback.format_exc()}")
    return jsonify({'error': 'Internal Server Error', 'detail': str(e)}), 500


@app.route('/health')
def health():
    try:
        progress.get_or_create_settings()
        return jsonify({'status': 'ok', 'db': 'ok'})
    except StoreError as e:
        print(f"[API] /health error: {e}\n{traceback.format_exc()}")
        return jsonify({'status': 'error', 'detail': str(e)}), 503


@app.route('/api/today', methods=['GET'])
def api_today():
    return jsonify(primary.current_state().to_dict())


@app.route('/api/logs', methods=['POST'])
def api_add_log():
    data = _json_body()
    amount = data.get('amount', request.form.get('amount'))
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        return jsonify({'error': 'amount must be an integer'}), 400
    return jsonify(primary.log(amount).to_dict())


@app.route('/api/logs/undo', methods=['POST'])
def api_undo_log():
    return jsonify(primary.undo().to_dict())


@app.route('/api/days/<day>', methods=['GET'])
def api_day(day):
    try:
        key = date.fromisoformat(day)
    except ValueError:
        return jsonify({'error': 'date must be YYYY-MM-DD'}), 400
    record = progress.store.fetch_record(key)
    if record is None:
        return jsonify({'error': 'No record for that day'}), 404
    data = record.to_dict()
    data.update({'remaining': record.remaining, 'is_complete': record.is_complete})
    return jsonify(data)


@app.route('/api/stats', methods=['GET'])
def api_stats():
    return jsonify(progress.stats())


@app.route('/api/history', methods=['GET'])
def api_history():
    all_time = request.args.get('range') == 'all'
    return jsonify(progress.history(all_time=all_time))


def _reminder_dict(r):
    return {'identifier': r.identifier, 'fire_at': r.fire_at.isoformat(), 'title': r.title, 'body': r.body}


@app.route('/api/reminders', methods=['GET'])
def api_reminders():
    now = progress.now()
    record = progress.get_or_create_day_record()
    plan = plan_reminders(now, progress.get_or_create_settings(), record, progress.tz)
    completion = completion_notice(record, now) if record.is_complete else None
    return jsonify({
        'pending': [_reminder_dict(r) for r in plan],
        'completion': _reminder_dict(completion) if completion else None,
    })


@app.route('/api/settings', methods=['GET'])
def api_get_settings():
    return jsonify(progress.get_or_create_settings().to_dict())


@app.route('/api/settings', methods=['PUT'])
def api_update_settings():
    settings = progress.update_settings(**_json_body())
    primary.push_state()
    return jsonify(settings.to_dict())


@app.route('/api/onboarding', methods=['POST'])
def api_onboarding():
    data = _json_body()
    settings = progress.complete_onboarding(
        start_date=date.fromisoformat(data['start_date']) if data.get('start_date') else None,
        mode=data.get('mode', 'flexible'),
        display_name=data.get('display_name'),
    )
    primary.push_state()
    return jsonify(settings.to_dict())


@app.route('/api/reset', methods=['POST'])
def api_reset():
    primary.reset()
    return jsonify({'ok': True, 'settings': progress.get_or_create_settings().to_dict()})


@app.route('/api/sync/message', methods=['POST'])
def api_sync_message():
    reply = primary.handle_message(request.get_json(silent=True))
    if 'error' in reply:
        return jsonify(reply), 400
    return jsonify(reply)


@app.route('/api/sync/snapshot', methods=['GET'])
def api_sync_snapshot():
    return jsonify(primary.current_state().to_dict())


if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=int(os.environ.get('PORT', 8080)))
