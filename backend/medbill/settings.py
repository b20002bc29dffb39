"""
Django settings for the medbill project.

Environment-driven configuration; every value has a development default.
"""

import os
from datetime import timedelta
from pathlib import Path

import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent


def _env(name, default=None):
    v = os.environ.get(name)
    return v if v not in (None, "") else default


def _env_bool(name, default=False):
    v = _env(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_csv(name, default=""):
    raw = _env(name, default) or ""
    return [x.strip() for x in raw.split(",") if x.strip()]


DEBUG = _env_bool("DJANGO_DEBUG", default=False)

SECRET_KEY = _env("DJANGO_SECRET_KEY", "dev-insecure-secret-key-change-me")

ALLOWED_HOSTS = _env_csv("DJANGO_ALLOWED_HOSTS", default="localhost,127.0.0.1,testserver")

CORS_ALLOWED_ORIGINS = _env_csv("CORS_ALLOWED_ORIGINS", default="http://localhost:3000,http://127.0.0.1:3000")
CORS_ALLOW_CREDENTIALS = True


INSTALLED_APPS = [
    'corsheaders',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'django_filters',

    'core',
    'users',
    'patients',
    'lab',
    'pharmacy',
    'catalog',
    'billing',
    'insurance',
    'reports',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'medbill.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'medbill.wsgi.application'
ASGI_APPLICATION = 'medbill.asgi.application'

DATABASE_URL = _env("DATABASE_URL")
if DATABASE_URL:
    DATABASES = {'default': dj_database_url.parse(DATABASE_URL)}
else:
    DATABASES = {'default': {'ENGINE': 'django.db.backends.sqlite3', 'NAME': str(BASE_DIR / 'db.sqlite3')}}

AUTH_USER_MODEL = 'users.User'

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
    'DEFAULT_FILTER_BACKENDS': (
        'django_filters.rest_framework.DjangoFilterBackend',
    ),
    'DEFAULT_PAGINATION_CLASS': 'core.pagination.StandardPagination',
    'PAGE_SIZE': 20,
    'EXCEPTION_HANDLER': 'core.exceptions.api_exception_handler',
    'COERCE_DECIMAL_TO_STRING': True,
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(hours=int(_env("JWT_ACCESS_HOURS", "8"))),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=int(_env("JWT_REFRESH_DAYS", "7"))),
}


# Billing policy. Prices are strings so they load into Decimal exactly.
MEDBILL = {
    'DEFAULT_PRICES': {
        'CONSULTATION': _env("MEDBILL_DEFAULT_CONSULTATION_PRICE", "50.00"),
        'LABORATORY': _env("MEDBILL_DEFAULT_LAB_PRICE", "30.00"),
        'RADIOLOGY': _env("MEDBILL_DEFAULT_RADIOLOGY_PRICE", "100.00"),
        'PHARMACY': _env("MEDBILL_DEFAULT_PHARMACY_PRICE", "25.00"),
        'OTHER': _env("MEDBILL_DEFAULT_OTHER_PRICE", "0.00"),
    },
    'DEFAULT_REIMBURSEMENT_RATE': _env("MEDBILL_DEFAULT_REIMBURSEMENT_RATE", "80"),
    'INVOICE_DUE_DAYS': int(_env("MEDBILL_INVOICE_DUE_DAYS", "30")),
    'CATALOG_BACKEND': _env("MEDBILL_CATALOG_BACKEND", "catalog.backends.DatabaseCatalog"),
    'CATALOG_URL': _env("MEDBILL_CATALOG_URL", ""),
    'CATALOG_LOOKUP_TIMEOUT': float(_env("MEDBILL_CATALOG_LOOKUP_TIMEOUT", "2.0")),
}


LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'standard': {'format': '%(asctime)s %(levelname)s %(name)s: %(message)s'},
    },
    'handlers': {
        'console': {'class': 'logging.StreamHandler', 'formatter': 'standard'},
    },
    'root': {'handlers': ['console'], 'level': _env("DJANGO_LOG_LEVEL", "INFO")},
    'loggers': {
        'django.db.backends': {'level': 'WARNING'},
    },
}
