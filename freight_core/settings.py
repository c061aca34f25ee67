import os
import sys
from pathlib import Path

from freight_core.env_loader import load_env_from_file

BASE_DIR = Path(__file__).resolve().parent.parent

# Try different possible locations for the env file
for _env_path in (BASE_DIR / 'env_var.env', BASE_DIR.parent / 'env_var.env'):
    if load_env_from_file(_env_path):
        break

# Determine if we're in test mode
TESTING = 'test' in sys.argv or 'pytest' in sys.modules


def _env_bool(name, default='False'):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'insecure-dev-key-change-me')
DEBUG = _env_bool('DJANGO_DEBUG')
ALLOWED_HOSTS = [h for h in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'django_filters',
    'drf_yasg',
    'workflow',
    'orders',
    'assignment',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.locale.LocaleMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'freight_core.urls'
WSGI_APPLICATION = 'freight_core.wsgi.application'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

# SQLite for local work; PostgreSQL in production so reservations get real row locks
DATABASES = {
    'default': {
        'ENGINE': os.getenv('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.getenv('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.getenv('DB_USER', ''),
        'PASSWORD': os.getenv('DB_PASSWORD', ''),
        'HOST': os.getenv('DB_HOST', ''),
        'PORT': os.getenv('DB_PORT', ''),
        'ATOMIC_REQUESTS': False,
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = os.getenv('LANGUAGE_CODE', 'en-us')
LANGUAGES = [
    ('en', 'English'),
    ('pt-br', 'Portuguese (Brazil)'),
]
LOCALE_PATHS = [BASE_DIR / 'locale']
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

REST_FRAMEWORK = {
    'DEFAULT_FILTER_BACKENDS': [
        'django_filters.rest_framework.DjangoFilterBackend',
        'rest_framework.filters.SearchFilter',
        'rest_framework.filters.OrderingFilter',
    ],
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
}

SWAGGER_SETTINGS = {
    'SECURITY_DEFINITIONS': {
        'ActorRole': {'type': 'apiKey', 'in': 'header', 'name': 'X-Actor-Role'},
        'ActorId': {'type': 'apiKey', 'in': 'header', 'name': 'X-Actor-Id'},
    },
}

# --- Freight workflow settings ---

# Hours a requester has to confirm a reported delivery before the sweep closes it
DELIVERY_CONFIRMATION_TIMEOUT_HOURS = int(os.getenv('DELIVERY_CONFIRMATION_TIMEOUT_HOURS', '72'))
# Per cargo type overrides, e.g. {"live_cattle": 24}
DELIVERY_CONFIRMATION_TIMEOUT_BY_CARGO = {}
SWEEP_INTERVAL_SECONDS = int(os.getenv('SWEEP_INTERVAL_SECONDS', '300'))

# PER_WEIGHT rates are quoted per tonne, weights are stored in kg
PRICE_WEIGHT_DIVISOR = 1000
PRICE_CURRENCY = os.getenv('PRICE_CURRENCY', 'BRL')

# --- Kafka ---
KAFKA_BROKER_URL = os.getenv('KAFKA_BROKER_URL', 'localhost:9092')
CAPACITY_EVENTS_TOPIC = os.getenv('CAPACITY_EVENTS_TOPIC', 'orders.capacity_changed')
FISCAL_EVENTS_TOPIC = os.getenv('FISCAL_EVENTS_TOPIC', 'fiscal.documents')
FISCAL_CONSUMER_GROUP = os.getenv('FISCAL_CONSUMER_GROUP', 'freight_fiscal_consumer_group')
PUBLISH_CAPACITY_EVENTS = _env_bool('PUBLISH_CAPACITY_EVENTS', 'False' if TESTING else 'True')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.getenv('LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'workflow': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
        'orders': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
        'assignment': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
    },
}
