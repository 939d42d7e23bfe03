"""
Django settings for the marketplace settlement engine.

Every environment reads this one module; differences come from environment
variables parsed by django-environ. Locally those are loaded from
.env.development (or the file named by ENV_FILE); containers pass them in
directly.

Money-related knobs (commission, payout thresholds and fee bands, delivery
fees, escrow windows) are deployment configuration, not code.
"""

import os
from datetime import timedelta
from pathlib import Path

import environ

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, []),
    LOG_LEVEL=(str, "INFO"),
)

_env_file = Path(os.environ.get("ENV_FILE", BASE_DIR.parent / ".env.development"))
if _env_file.exists():
    environ.Env.read_env(_env_file)

SECRET_KEY = env("SECRET_KEY")
DEBUG = env("DEBUG")
ALLOWED_HOSTS = env("ALLOWED_HOSTS")

# =============================================================================
# Django
# =============================================================================
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework_simplejwt",
    "rest_framework_simplejwt.token_blacklist",
    "django_celery_beat",
    "drf_spectacular",
    "core",
    "authentication",
    "orders",
    "payments",
]

# Webhook and job views are csrf_exempt; the API itself is bearer-token only
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

# Only the admin renders templates
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DATABASES = {
    "default": env.db("DATABASE_URL", default="postgres://postgres:postgres@db:5432/settlement"),
}
if DATABASES["default"]["ENGINE"] == "django.db.backends.postgresql":
    DATABASES["default"]["OPTIONS"] = {"connect_timeout": 10}

# Gateway tokens are cached here; sweep locks talk to the same Redis directly
CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": env("REDIS_URL", default="redis://redis:6379/0"),
        "OPTIONS": {"CLIENT_CLASS": "django_redis.client.DefaultClient"},
    }
}

AUTH_USER_MODEL = "authentication.User"
AUTH_PASSWORD_VALIDATORS = [
    {"NAME": f"django.contrib.auth.password_validation.{name}"}
    for name in (
        "UserAttributeSimilarityValidator",
        "MinimumLengthValidator",
        "CommonPasswordValidator",
        "NumericPasswordValidator",
    )
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = env("STATIC_URL", default="/static/")
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# =============================================================================
# API
# =============================================================================
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=env.int("JWT_ACCESS_MINUTES", default=60)),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=env.int("JWT_REFRESH_DAYS", default=7)),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": True,
    "SIGNING_KEY": env("JWT_SIGNING_KEY", default=SECRET_KEY),
    "AUTH_HEADER_TYPES": ("Bearer",),
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Marketplace Settlement API",
    "DESCRIPTION": "Checkout, escrow, webhook reconciliation, and vendor payouts",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "SCHEMA_PATH_PREFIX": r"/api/v[0-9]+",
    "COMPONENT_SPLIT_REQUEST": True,
}

# =============================================================================
# Background jobs
# =============================================================================
# Schedules live in django-celery-beat tables (seeded by a payments migration)
CELERY_BROKER_URL = env("CELERY_BROKER_URL", default="redis://redis:6379/1")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default="redis://redis:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TIME_LIMIT = env.int("CELERY_TASK_TIME_LIMIT", default=15 * 60)
CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"

# Sent by an external scheduler in X-Scheduler-Token. Empty refuses every call.
SCHEDULED_JOB_TOKEN = env("SCHEDULED_JOB_TOKEN", default="")

# =============================================================================
# Gateways
# =============================================================================
GATEWAY_TIMEOUT_SECONDS = env.int("GATEWAY_TIMEOUT_SECONDS", default=30)
# Applies to token and status calls only; collect and disburse never retry
GATEWAY_MAX_RETRIES = env.int("GATEWAY_MAX_RETRIES", default=2)
GATEWAY_TOKEN_SAFETY_MARGIN_SECONDS = env.int("GATEWAY_TOKEN_SAFETY_MARGIN_SECONDS", default=60)

PHONE_COUNTRY_CODE = env("PHONE_COUNTRY_CODE", default="254")
PAYMENT_CURRENCY = env("PAYMENT_CURRENCY", default="KES")

FRONTEND_PAYMENT_SUCCESS_URL = env(
    "FRONTEND_PAYMENT_SUCCESS_URL", default="http://localhost:3000/payment/success"
)
FRONTEND_PAYMENT_FAILURE_URL = env(
    "FRONTEND_PAYMENT_FAILURE_URL", default="http://localhost:3000/payment/failed"
)

# -- M-Pesa (Daraja) --
MPESA_ENVIRONMENT = env("MPESA_ENVIRONMENT", default="sandbox")
MPESA_CONSUMER_KEY = env("MPESA_CONSUMER_KEY", default="")
MPESA_CONSUMER_SECRET = env("MPESA_CONSUMER_SECRET", default="")
MPESA_SHORTCODE = env("MPESA_SHORTCODE", default="")
MPESA_PASSKEY = env("MPESA_PASSKEY", default="")
MPESA_CALLBACK_URL = env("MPESA_CALLBACK_URL", default="")
# B2C, used when PAYOUT_GATEWAY=mpesa
MPESA_B2C_SHORTCODE = env("MPESA_B2C_SHORTCODE", default="")
MPESA_B2C_INITIATOR_NAME = env("MPESA_B2C_INITIATOR_NAME", default="")
MPESA_B2C_SECURITY_CREDENTIAL = env("MPESA_B2C_SECURITY_CREDENTIAL", default="")
MPESA_B2C_RESULT_URL = env("MPESA_B2C_RESULT_URL", default="")
MPESA_B2C_TIMEOUT_URL = env("MPESA_B2C_TIMEOUT_URL", default="")

# -- Pesapal v3 --
PESAPAL_ENVIRONMENT = env("PESAPAL_ENVIRONMENT", default="sandbox")
PESAPAL_CONSUMER_KEY = env("PESAPAL_CONSUMER_KEY", default="")
PESAPAL_CONSUMER_SECRET = env("PESAPAL_CONSUMER_SECRET", default="")
PESAPAL_IPN_URL = env("PESAPAL_IPN_URL", default="")
PESAPAL_CALLBACK_URL = env("PESAPAL_CALLBACK_URL", default="")
PESAPAL_CANCELLATION_URL = env("PESAPAL_CANCELLATION_URL", default="")

# -- IntaSend --
INTASEND_ENVIRONMENT = env("INTASEND_ENVIRONMENT", default="sandbox")
INTASEND_PUBLISHABLE_KEY = env("INTASEND_PUBLISHABLE_KEY", default="")
INTASEND_SECRET_KEY = env("INTASEND_SECRET_KEY", default="")
INTASEND_REDIRECT_URL = env("INTASEND_REDIRECT_URL", default="")
INTASEND_WEBHOOK_CHALLENGE = env("INTASEND_WEBHOOK_CHALLENGE", default="")

# -- Paystack --
PAYSTACK_SECRET_KEY = env("PAYSTACK_SECRET_KEY", default="")
PAYSTACK_CALLBACK_URL = env("PAYSTACK_CALLBACK_URL", default="")

# -- Stripe --
STRIPE_SECRET_KEY = env("STRIPE_SECRET_KEY", default="")
STRIPE_PUBLISHABLE_KEY = env("STRIPE_PUBLISHABLE_KEY", default="")
STRIPE_WEBHOOK_SECRET = env("STRIPE_WEBHOOK_SECRET", default="")
STRIPE_API_TIMEOUT_SECONDS = env.int("STRIPE_API_TIMEOUT_SECONDS", default=10)
# Lowercase ISO code; amounts go out in minor units
STRIPE_CURRENCY = env("STRIPE_CURRENCY", default="kes")

# =============================================================================
# Marketplace policy
# =============================================================================
# Percent of the order total (goods plus delivery)
PLATFORM_COMMISSION_PERCENT = env.float("PLATFORM_COMMISSION_PERCENT", default=10.0)

# Addresses mentioning a metro keyword pay the metro fee
DELIVERY_METRO_KEYWORDS = env.list("DELIVERY_METRO_KEYWORDS", default=["nairobi"])
DELIVERY_METRO_FEE = env("DELIVERY_METRO_FEE", default="200")
DELIVERY_STANDARD_FEE = env("DELIVERY_STANDARD_FEE", default="400")
PRICE_TOLERANCE = env("PRICE_TOLERANCE", default="1")

ESCROW_AUTO_RELEASE_DAYS = env.int("ESCROW_AUTO_RELEASE_DAYS", default=3)
VENDOR_CONFIRMATION_TIMEOUT_HOURS = env.int("VENDOR_CONFIRMATION_TIMEOUT_HOURS", default=24)
UNSHIPPED_ORDER_REFUND_DAYS = env.int("UNSHIPPED_ORDER_REFUND_DAYS", default=3)

PAYMENT_RECONCILE_AFTER_MINUTES = env.int("PAYMENT_RECONCILE_AFTER_MINUTES", default=10)
WEBHOOK_MAX_RETRIES = env.int("WEBHOOK_MAX_RETRIES", default=5)
WEBHOOK_RETENTION_DAYS = env.int("WEBHOOK_RETENTION_DAYS", default=90)

PAYOUT_GATEWAY = env("PAYOUT_GATEWAY", default="intasend")
# Fee bands are [[upper_bound_inclusive, fee], ...]; a null bound catches the rest
AUTO_PAYOUT_THRESHOLD = env("AUTO_PAYOUT_THRESHOLD", default="1500")
AUTO_PAYOUT_FEE_BEARER = env("AUTO_PAYOUT_FEE_BEARER", default="platform")
AUTO_PAYOUT_FEE_BANDS = env.json("AUTO_PAYOUT_FEE_BANDS", default=[[100, 10], [1000, 20], [None, 100]])
MANUAL_PAYOUT_THRESHOLD = env("MANUAL_PAYOUT_THRESHOLD", default="500")
MANUAL_PAYOUT_FEE_BEARER = env("MANUAL_PAYOUT_FEE_BEARER", default="vendor")
MANUAL_PAYOUT_FEE_BANDS = env.json("MANUAL_PAYOUT_FEE_BANDS", default=[[None, 100]])

# =============================================================================
# Logging
# =============================================================================
LOG_LEVEL = env("LOG_LEVEL")
LOG_DIR = Path(env("LOG_DIR", default=str(BASE_DIR / "logs")))
LOG_DIR.mkdir(parents=True, exist_ok=True)

_log_handlers = ["console", "file"]

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} [{name}] {message}",
            "style": "{",
        },
        "file": {
            "format": "[{asctime}] {levelname} {name} {module}:{lineno} pid={process:d} - {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "verbose"},
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            # web, celery-worker and celery-beat each write their own file
            "filename": LOG_DIR / env("LOG_FILE_NAME", default="settlement.log"),
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "file",
            "encoding": "utf-8",
        },
    },
    "root": {"handlers": _log_handlers, "level": LOG_LEVEL},
    "loggers": {
        name: {"handlers": _log_handlers, "level": level, "propagate": False}
        for name, level in (
            ("django", LOG_LEVEL),
            ("django.request", "ERROR"),
            ("celery", LOG_LEVEL),
            ("payments", LOG_LEVEL),
            ("orders", LOG_LEVEL),
        )
    },
}

# =============================================================================
# Production hardening
# =============================================================================
if not DEBUG:
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SECURE_SSL_REDIRECT = env.bool("SECURE_SSL_REDIRECT", default=True)
    SESSION_COOKIE_SECURE = CSRF_COOKIE_SECURE = True
    SECURE_HSTS_SECONDS = env.int("SECURE_HSTS_SECONDS", default=31536000)
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"
