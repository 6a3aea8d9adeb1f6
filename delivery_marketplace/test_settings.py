"""
Settings used by the test-suite.

Runs against SQLite with the in-process sandbox gateway so tests never need a
MySQL server or network access.
"""

from .settings import *  # noqa: F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'test_db.sqlite3',  # noqa: F405
    }
}

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

PAYMENT_GATEWAY = {
    **PAYMENT_GATEWAY,  # noqa: F405
    'BACKEND': 'marketplace.gateway.SandboxPaymentGateway',
    'WEBHOOK_SECRET': 'whsec_test_secret',
}

REST_FRAMEWORK = {
    **REST_FRAMEWORK,  # noqa: F405
    'DEFAULT_THROTTLE_RATES': {
        'booking_create': '10000/hour',
        'payment_webhook': '10000/minute',
    },
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'null': {'class': 'logging.NullHandler'},
    },
    'root': {'handlers': ['null'], 'level': 'CRITICAL'},
}
