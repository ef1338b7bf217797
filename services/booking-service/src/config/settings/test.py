"""
Test Settings

Django settings for running tests.
"""

from .base import *

DEBUG = False
TESTING = True

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
    }
}

CELERY_BROKER_URL = 'memory://'
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

JWT_SECRET_KEY = 'test-secret-key-for-testing-only'
JWT_SETTINGS = {
    'ALGORITHM': 'HS256',
    'VERIFYING_KEY': JWT_SECRET_KEY,
    'ISSUER': 'user-service',
}
SERVICE_AUTH_TOKEN = 'test-service-token'

EVENT_BACKEND = 'memory'
NOTIFICATION_SINK = 'logging'
PAYMENT_SERVICE_URL = 'http://payment-service.test'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': True,
    'handlers': {
        'null': {
            'class': 'logging.NullHandler',
        },
    },
    'root': {
        'handlers': ['null'],
        'level': 'CRITICAL',
    },
}

CORS_ALLOW_ALL_ORIGINS = True
