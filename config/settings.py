from pathlib import Path
import os
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only")
DEBUG = os.getenv("DJANGO_DEBUG", "1") == "1"
APPEND_SLASH = True

ALLOWED_HOSTS = ["*", "localhost", "127.0.0.1"]


INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.admin",

    "corsheaders",
    "rest_framework",
    "drf_spectacular",

    "commons",   # health/time endpoints
    "fiscal",    # conformidade fiscal multi-país (assinatura, jobs, Z-report)
]


MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "commons.middleware.RequestLogMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]


ROOT_URLCONF = "config.urls"

CORS_ALLOW_ALL_ORIGINS = True

# PostgreSQL quando PGDATABASE estiver definido; SQLite local para dev/testes.
if os.getenv("PGDATABASE"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("PGDATABASE"),
            "USER": os.getenv("PGUSER", "postgres"),
            "PASSWORD": os.getenv("PGPASSWORD", ""),
            "HOST": os.getenv("PGHOST", "127.0.0.1"),
            "PORT": os.getenv("PGPORT", "5432"),
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
            "TEST": {
                "NAME": "test_fiscal_compliance",
            },
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_THROTTLE_CLASSES": ["rest_framework.throttling.UserRateThrottle"],
    "DEFAULT_THROTTLE_RATES": {
        "user": os.getenv("API_USER_THROTTLE", "1000/hour"),
    },
}

from datetime import timedelta
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
    "SIGNING_KEY": SECRET_KEY,
    "AUTH_HEADER_TYPES": ("Bearer",),
}

LANGUAGE_CODE = "pt-br"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
MEDIA_ROOT = os.getenv("MEDIA_ROOT", str(BASE_DIR / "media"))

SPECTACULAR_SETTINGS = {
    "TITLE": "Fiscal Compliance API",
    "VERSION": "1.0",
    "SERVE_INCLUDE_SCHEMA": False,
}

sentry_sdk.init(
    dsn=os.getenv("SENTRY_DSN", ""),
    integrations=[DjangoIntegration()],
    traces_sample_rate=0.1,
    send_default_pii=False,
)

# =============================
# 🧱 Templates
# =============================
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "fiscal-default",
    }
}

# =============================
# 🧾 Conformidade fiscal
# =============================

# Quantidade máxima de entradas de histórico de jobs por organização.
FISCAL_JOB_HISTORY_MAX_ENTRIES = int(os.getenv("FISCAL_JOB_HISTORY_MAX_ENTRIES", "1000"))

# Quantidade máxima de Z-reports mantidos por site (numeração nunca é reutilizada).
FISCAL_ZREPORT_MAX_RETAINED = int(os.getenv("FISCAL_ZREPORT_MAX_RETAINED", "3650"))

# Janela (+/-) em minutos ao redor do horário configurado do job diário.
FISCAL_JOB_WINDOW_MINUTES = int(os.getenv("FISCAL_JOB_WINDOW_MINUTES", "30"))

# Triggers duráveis por organização.
FISCAL_DAILY_JOBS_INTERVAL_MINUTES = int(os.getenv("FISCAL_DAILY_JOBS_INTERVAL_MINUTES", "60"))
FISCAL_DAILY_JOBS_INITIAL_DELAY_MINUTES = int(os.getenv("FISCAL_DAILY_JOBS_INITIAL_DELAY_MINUTES", "1"))
FISCAL_FREQUENT_JOBS_INTERVAL_MINUTES = int(os.getenv("FISCAL_FREQUENT_JOBS_INTERVAL_MINUTES", "15"))
FISCAL_FREQUENT_JOBS_INITIAL_DELAY_MINUTES = int(os.getenv("FISCAL_FREQUENT_JOBS_INITIAL_DELAY_MINUTES", "5"))

# Intervalo de polling do processo run_fiscal_scheduler.
FISCAL_SCHEDULER_POLL_SECONDS = int(os.getenv("FISCAL_SCHEDULER_POLL_SECONDS", "30"))

# Timeout padrão das chamadas aos dispositivos de assinatura (ms).
FISCAL_DEVICE_DEFAULT_TIMEOUT_MS = int(os.getenv("FISCAL_DEVICE_DEFAULT_TIMEOUT_MS", "30000"))

# Prefixo (default storage) onde os arquivos de exportação são gravados.
FISCAL_ARCHIVE_PREFIX = os.getenv("FISCAL_ARCHIVE_PREFIX", "fiscal-archives")

# Registro externo de transações auditadas (fonte do Z-report).
FISCAL_REGISTRY = {
    "BASE_URL": os.getenv("FISCAL_REGISTRY_BASE_URL", "http://localhost:8100"),
    "TOKEN": os.getenv("FISCAL_REGISTRY_TOKEN", ""),
    "TIMEOUT": int(os.getenv("FISCAL_REGISTRY_TIMEOUT", "30")),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "class": "pythonjsonlogger.json.JsonFormatter",
        },
        "simple": {
            "format": "{levelname} {asctime} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "level": "INFO",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": True,
        },
        "compliance.fiscal": {
            "handlers": ["console"],
            "level": "DEBUG",
            "propagate": True,
        },
    },
}

if not DEBUG:
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SECURE_HSTS_SECONDS = 63072000
    SECURE_CONTENT_TYPE_NOSNIFF = True
