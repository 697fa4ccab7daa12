#!/usr/bin/env python3
"""
Heat Pump Web Service - Flask + WebSocket
REST API for heat pump data, heating status and boosting schedules,
with Socket.IO push of every new snapshot and the ModBus poller as background task.

Usage:
    export MODBUS_HOST="192.168.1.100"
    export INFLUXDB_TOKEN="..."
    python3 -m heatpump.app
"""

import logging
from functools import wraps
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request, session
from flask_cors import CORS
from flask_socketio import SocketIO, emit, join_room
from werkzeug.security import check_password_hash

from .collector import build_components
from .config import load_settings
from .errors import FieldBusError, PersistenceError, UnknownVariable, ValidationError
from .models import HeatPumpSnapshot, ScheduleVariable, schedule_from_json, schedule_to_json
from .service import HeatingService

logger = logging.getLogger(__name__)

BROADCAST_ROOM = 'heat-pump'

socketio = SocketIO()

heat_pump = Blueprint('heat_pump', __name__, url_prefix='/api/heat-pump')
auth = Blueprint('auth', __name__, url_prefix='/api/auth')


def get_service() -> HeatingService:
    return current_app.extensions['heatpump_service']


def authorize(view):
    """Reject requests without a logged-in session user"""
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not session.get('user'):
            return '', 401
        return view(*args, **kwargs)
    return wrapper


def request_object() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_enabled(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', '1'):
        return True
    if isinstance(value, str) and value.lower() in ('false', '0'):
        return False
    raise ValidationError(f"schedulingEnabled must be true or false, got {value!r}")


# ==================== Heat pump routes ====================

@heat_pump.route('/', methods=['GET'], strict_slashes=False)
@authorize
def get_data():
    """Heat pump snapshots from the date given by year, month and day, or all"""
    snapshots = get_service().get_data(
        request.args.get('year'), request.args.get('month'), request.args.get('day')
    )
    return jsonify([snapshot.to_json() for snapshot in snapshots])


@heat_pump.route('/status', methods=['GET'])
@authorize
def get_status():
    """One of BOOSTING, RUNNING, SOFT_START or STOPPED"""
    return jsonify(get_service().get_status().value)


@heat_pump.route('/start', methods=['POST'])
@authorize
def start():
    """Start circuit 3, either normally or with soft-start"""
    soft_start = request_object().get('softStart', False)
    if not isinstance(soft_start, bool):
        raise ValidationError("softStart must be a boolean")

    service = get_service()
    if soft_start:
        service.soft_start_circuit_three()
    else:
        service.start_circuit_three()
    return jsonify(service.get_status().value), 200


@heat_pump.route('/stop', methods=['POST'])
@authorize
def stop():
    service = get_service()
    service.stop_circuit_three()
    return jsonify(service.get_status().value), 200


@heat_pump.route('/schedules/<variable>', methods=['GET'])
@authorize
def get_schedule(variable):
    schedule = get_service().get_schedule(ScheduleVariable.parse(variable))
    return jsonify(schedule_to_json(schedule))


@heat_pump.route('/schedules/<variable>', methods=['POST'])
@authorize
def set_schedule(variable):
    schedule_variable = ScheduleVariable.parse(variable)
    body = request_object()
    if 'schedule' not in body:
        raise ValidationError("Property schedule is missing from the request body")
    get_service().set_schedule(schedule_variable, schedule_from_json(body['schedule']))
    return '', 200


@heat_pump.route('/scheduling', methods=['GET'])
@authorize
def get_scheduling():
    return jsonify(get_service().get_scheduling_enabled())


@heat_pump.route('/scheduling', methods=['POST'])
@authorize
def set_scheduling_from_body():
    body = request_object()
    if 'schedulingEnabled' not in body:
        raise ValidationError("Property schedulingEnabled is missing from the request body")
    status = get_service().set_scheduling_enabled(parse_enabled(body['schedulingEnabled']))
    return jsonify(status.value), 200


@heat_pump.route('/scheduling/<enabled>', methods=['POST'])
@authorize
def set_scheduling(enabled):
    status = get_service().set_scheduling_enabled(parse_enabled(enabled))
    return jsonify(status.value), 200


# ==================== Auth routes ====================

def find_user(username: str) -> Optional[dict]:
    for user in current_app.config.get('USERS', []):
        if user.get('username') == username:
            return user
    return None


@auth.route('/login', methods=['POST'])
def login():
    body = request_object()
    user = find_user(body.get('username'))
    password = body.get('password')
    if (user is None or not isinstance(password, str)
            or not check_password_hash(user.get('password_hash', ''), password)):
        return jsonify({'error': 'invalid username or password'}), 401

    session['user'] = user['username']
    logger.info(f"User {user['username']} logged in")
    return jsonify({'username': user['username'], 'name': user.get('name', user['username'])})


@auth.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return '', 204


@auth.route('/session', methods=['GET'])
@authorize
def current_session():
    user = find_user(session['user']) or {'username': session['user']}
    return jsonify({'username': user['username'], 'name': user.get('name', user['username'])})


# ==================== Error handlers ====================

def register_error_handlers(app: Flask):
    @app.errorhandler(UnknownVariable)
    def unknown_variable(error):
        return jsonify({'error': 'Unknown variable'}), 400

    @app.errorhandler(ValidationError)
    def validation_error(error):
        return jsonify({'error': str(error)}), 400

    @app.errorhandler(FieldBusError)
    def field_bus_error(error):
        logger.error(f"Heat pump request failed: {error}")
        return jsonify({'error': 'Heat pump not reachable'}), 503

    @app.errorhandler(PersistenceError)
    def persistence_error(error):
        logger.error(f"Database request failed: {error}")
        return jsonify({'error': 'Database not reachable'}), 503

    @app.errorhandler(404)
    def unknown_endpoint(error):
        return jsonify({'error': 'unknown endpoint'}), 404


# ==================== WebSocket Handlers ====================

@socketio.on('login')
def handle_login():
    """Subscribe an authenticated client to heat pump data"""
    username = session.get('user')
    if not username:
        emit('unauthorized', {'error': 'not logged in'})
        return
    join_room(BROADCAST_ROOM)
    user = find_user(username) or {'username': username}
    logger.info(f"Client {request.sid} subscribed to heat pump data")
    emit('authenticated', {'username': user['username'], 'name': user.get('name', user['username'])})


@socketio.on('disconnect')
def handle_disconnect(*args):
    logger.info(f"Client {request.sid} disconnected")


def broadcast_snapshot(snapshot: HeatPumpSnapshot):
    socketio.emit('heatPumpData', snapshot.to_json(), to=BROADCAST_ROOM)


class BackgroundTimer:
    """threading.Timer replacement running on the Socket.IO async scheduler"""

    def __init__(self, interval: float, function):
        self.interval = interval
        self.function = function
        self.daemon = True
        self.task = None
        self._cancelled = False

    def start(self):
        self.task = socketio.start_background_task(self._run)

    def cancel(self):
        self._cancelled = True

    def _run(self):
        socketio.sleep(self.interval)
        if not self._cancelled:
            self.function()


# ==================== App factory ====================

def create_app(service: HeatingService, secret_key: str = 'heatpump-secret-key',
               users: Optional[list] = None, async_mode: Optional[str] = None) -> Flask:
    """
    Build the Flask application around a heating service

    Args:
        service: Heating service used by all heat pump routes
        secret_key: Session cookie signing key
        users: Login users, dicts with username, name and password_hash
        async_mode: Socket.IO async mode (None lets Flask-SocketIO choose)
    """
    app = Flask(__name__)
    app.config['SECRET_KEY'] = secret_key
    app.config['USERS'] = users or []
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.extensions['heatpump_service'] = service
    CORS(app, supports_credentials=True)

    app.register_blueprint(heat_pump)
    app.register_blueprint(auth)
    register_error_handlers(app)

    socketio.init_app(
        app,
        cors_allowed_origins="*",
        async_mode=async_mode,
        ping_timeout=60,
        ping_interval=25,
    )
    return app


def main():
    """Entry point for the heat pump web service"""
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    client, store, service, collector = build_components(settings)
    store.ping()

    app = create_app(service, secret_key=settings.secret_key, users=settings.users,
                     async_mode='eventlet')
    service.timer_factory = BackgroundTimer
    service.recover()
    collector.subscribe(broadcast_snapshot)
    socketio.start_background_task(collector.run, sleep=socketio.sleep)

    logger.info("=" * 60)
    logger.info("Starting Heat Pump Web Service")
    logger.info(f"Heat pump: {settings.modbus_host}:{settings.modbus_port}")
    logger.info(f"Polling interval: {settings.collection_interval} seconds")
    logger.info(f"Listening on http://{settings.web_host}:{settings.web_port}")
    logger.info("=" * 60)

    try:
        socketio.run(app, host=settings.web_host, port=settings.web_port, use_reloader=False)
    finally:
        client.close()
        store.close()


if __name__ == '__main__':
    main()
