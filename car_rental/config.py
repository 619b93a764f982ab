"""
Application configuration.  Values come from environment variables where set
and fall back to development defaults.  ``create_app`` accepts a mapping of
overrides which is how the tests point the app at an in-memory database.
"""

import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///car_rental.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Demo mode: no payment gateway is wired in, so a submitted booking is
    # treated as settled straight away.
    BOOKING_DEMO_PAYMENTS = _env_flag('BOOKING_DEMO_PAYMENTS', True)
    # When True a booking returning on day D conflicts with one picked up on D.
    BOOKING_INCLUSIVE_BOUNDARIES = _env_flag('BOOKING_INCLUSIVE_BOUNDARIES', True)

    REPORT_DEFAULT_WINDOW_DAYS = int(os.getenv('REPORT_DEFAULT_WINDOW_DAYS', '30'))
    OPERATOR_ROLES = ('admin', 'manager', 'employee')
    CAR_PLACEHOLDER_IMAGE = '/images/placeholder-car.jpg'
