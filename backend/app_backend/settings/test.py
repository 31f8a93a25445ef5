"""Settings for the test suite: no Redis, no outbound HTTP."""

from .settings import *

DEBUG = False
SECRET_KEY = "test-secret-key"

# File-backed so worker threads in the concurrency tests share one database.
# IMMEDIATE takes the write lock at BEGIN; concurrent writers wait on it.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "test_db.sqlite3",
        "OPTIONS": {
            "transaction_mode": "IMMEDIATE",
            "timeout": 20,
        },
        "TEST": {
            "NAME": BASE_DIR / "test_db.sqlite3",
        },
    }
}

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

BOOKING_ACCEPT_TIMEOUT_SECONDS = 0
ROUTING_ENABLED = False

RAZORPAY_KEY_ID = "rzp_test_key"
RAZORPAY_KEY_SECRET = "rzp_test_secret"
RAZORPAY_WEBHOOK_SECRET = "whsec_test"

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LOG_LEVEL = "WARNING"
LOGGING["root"]["level"] = LOG_LEVEL
