"""
Flask application factory and the JSON routes.

Routes are thin: they read the caller's identity from the gateway headers,
pull arguments off the request and hand them to the booking, record and
report modules.  Errors raised by those modules are ``RentalError``
subclasses and are rendered by a single error handler.
"""

import logging

from flask import Flask, current_app, jsonify, request

from . import bookings, notifications, records, reports
from .availability import check_availability
from .config import Config
from .errors import (AuthorizationError, ForbiddenError, RentalError,
                     ValidationError)
from .models import db

log = logging.getLogger(__name__)


def create_app(overrides=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    db.init_app(app)
    with app.app_context():
        db.create_all()

    app.register_error_handler(RentalError, handle_rental_error)
    register_routes(app)
    return app


def handle_rental_error(exc: RentalError):
    if exc.status_code >= 500:
        log.error('%s: %s', type(exc).__name__, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


# ---------------------------------------------------------------------------
# Request helpers

def current_user() -> str:
    user_id = (request.headers.get('X-User-Id') or '').strip()
    if not user_id:
        raise AuthorizationError('Please log in to continue')
    return user_id


def is_operator() -> bool:
    role = (request.headers.get('X-User-Role') or '').strip().lower()
    return role in current_app.config['OPERATOR_ROLES']


def require_operator() -> str:
    user_id = current_user()
    if not is_operator():
        raise ForbiddenError('Operator access required')
    return user_id


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError('Request body must be JSON')
    return data


def page_args():
    try:
        page = int(request.args.get('page', 1))
        limit = int(request.args.get('limit', 10))
    except ValueError:
        raise ValidationError('page and limit must be integers') from None
    return max(page, 1), min(max(limit, 1), 100)


# ---------------------------------------------------------------------------
# Routes

def register_routes(app: Flask) -> None:

    @app.route('/')
    def index():
        return jsonify({'message': 'Car rental API is running'})

    @app.route('/api/availability')
    def availability():
        result = check_availability(request.args.get('carId'),
                                    request.args.get('pickupDate'),
                                    request.args.get('returnDate'))
        return jsonify({'allowed': result.allowed, 'conflicts': result.conflicts})

    @app.route('/api/bookings', methods=['GET', 'POST'])
    def user_bookings():
        user_id = current_user()
        if request.method == 'POST':
            booking = bookings.create_booking(user_id, json_body())
            return jsonify({'message': 'Booking created successfully',
                            'booking': booking}), 201
        return jsonify({'bookings': bookings.list_bookings(user_id)})

    @app.route('/api/bookings/<booking_id>', methods=['GET', 'PATCH'])
    def user_booking(booking_id):
        user_id = current_user()
        if request.method == 'PATCH':
            booking = bookings.update_booking(booking_id, user_id, json_body())
            return jsonify({'message': 'Booking updated successfully', 'booking': booking})
        return jsonify({'booking': bookings.get_booking(booking_id, user_id)})

    @app.route('/api/bookings/<booking_id>/cancel', methods=['POST'])
    def cancel(booking_id):
        booking = bookings.cancel_booking(booking_id, current_user(),
                                          is_operator=is_operator())
        return jsonify({'message': 'Booking cancelled', 'booking': booking})

    @app.route('/api/admin/bookings')
    def admin_bookings():
        require_operator()
        page, limit = page_args()
        return jsonify(bookings.list_all_bookings(request.args, page, limit))

    @app.route('/api/admin/bookings/<booking_id>/status', methods=['POST'])
    def admin_booking_status(booking_id):
        operator = require_operator()
        target = json_body().get('status')
        booking = bookings.transition_booking(booking_id, target)
        log.info('Operator %s set booking %s to %s', operator, booking_id, target)
        return jsonify({'booking': booking})

    @app.route('/api/admin/expenses', methods=['GET', 'POST'])
    def admin_expenses():
        require_operator()
        if request.method == 'POST':
            return jsonify({'expense': records.create_expense(json_body())}), 201
        page, limit = page_args()
        return jsonify(reports.get_expense_report(request.args, page, limit))

    @app.route('/api/admin/clients')
    def admin_clients():
        require_operator()
        page, limit = page_args()
        return jsonify(reports.get_client_report(request.args, page, limit))

    @app.route('/api/admin/clients/kpis')
    def admin_client_kpis():
        require_operator()
        return jsonify(reports.get_client_kpis())

    @app.route('/api/admin/clients/trend')
    def admin_client_trend():
        require_operator()
        try:
            days = int(request.args.get('days', current_app.config['REPORT_DEFAULT_WINDOW_DAYS']))
        except ValueError:
            raise ValidationError('days must be an integer', field='days') from None
        return jsonify({'trend': reports.get_client_trend(days)})

    @app.route('/api/admin/analytics')
    def admin_analytics():
        require_operator()
        return jsonify(reports.get_fleet_analytics())

    @app.route('/api/notifications')
    def user_notifications():
        return jsonify({'notifications': notifications.list_notifications(current_user())})

    @app.route('/api/notifications/<int:notification_id>/read', methods=['POST'])
    def read_notification(notification_id: int):
        note = notifications.mark_read(notification_id, current_user())
        return jsonify({'notification': note})
