"""
Django settings for the box-card ledger.
"""

import os
from pathlib import Path

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


def _database_config():
    engine_aliases = {
        "sqlite": "django.db.backends.sqlite3",
        "sqlite3": "django.db.backends.sqlite3",
        "postgres": "django.db.backends.postgresql",
        "postgresql": "django.db.backends.postgresql",
        "mysql": "django.db.backends.mysql",
        "mariadb": "django.db.backends.mysql",
    }
    raw_engine = (os.getenv("DJANGO_DB_ENGINE", "django.db.backends.sqlite3") or "").strip()
    engine = engine_aliases.get(raw_engine.lower(), raw_engine)
    if not engine:
        engine = "django.db.backends.sqlite3"

    if engine == "django.db.backends.sqlite3":
        db_name = (os.getenv("DJANGO_DB_NAME", "") or "").strip()
        return {
            "ENGINE": engine,
            "NAME": db_name or (BASE_DIR / "db.sqlite3"),
        }

    config = {
        "ENGINE": engine,
        "NAME": (os.getenv("DJANGO_DB_NAME", "") or "").strip(),
        "USER": (os.getenv("DJANGO_DB_USER", "") or "").strip(),
        "PASSWORD": os.getenv("DJANGO_DB_PASSWORD", ""),
        "HOST": (os.getenv("DJANGO_DB_HOST", "") or "").strip(),
        "PORT": (os.getenv("DJANGO_DB_PORT", "") or "").strip(),
    }

    if engine == "django.db.backends.mysql":
        mysql_collation = (os.getenv("DJANGO_DB_COLLATION", "utf8mb4_unicode_ci") or "").strip()
        config["OPTIONS"] = {
            "charset": "utf8mb4",
            "init_command": f"SET NAMES utf8mb4 COLLATE {mysql_collation}",
        }
        config["TEST"] = {
            "CHARSET": "utf8mb4",
            "COLLATION": mysql_collation,
        }
    elif engine == "django.db.backends.postgresql":
        config["OPTIONS"] = {
            "options": "-c client_encoding=UTF8",
        }

    return config


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-boxcards-local-development-only")
DEBUG = env_bool("DJANGO_DEBUG", True)

ALLOWED_HOSTS = [host.strip() for host in os.getenv("DJANGO_ALLOWED_HOSTS", "127.0.0.1,localhost").split(",") if host.strip()]
CSRF_TRUSTED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("DJANGO_CSRF_TRUSTED_ORIGINS", "").split(",")
    if origin.strip()
]

# Application definition

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    
    'boxcards.apps.BoxcardsConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

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

WSGI_APPLICATION = 'config.wsgi.application'

DATABASES = {"default": _database_config()}

AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]

# Internationalization

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('DJANGO_TIME_ZONE', 'Africa/Accra')

USE_I18N = False
USE_TZ = True

# Static files (CSS, JavaScript, Images)

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# The admin is the only signed-in surface.
LOGIN_URL = 'admin:login'
LOGIN_REDIRECT_URL = 'admin:index'
LOGOUT_REDIRECT_URL = 'admin:login'

SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = 'Lax'
SESSION_COOKIE_SECURE = env_bool('DJANGO_SECURE_COOKIES', False)
CSRF_COOKIE_HTTPONLY = True
CSRF_COOKIE_SAMESITE = 'Lax'
CSRF_COOKIE_SECURE = env_bool('DJANGO_SECURE_COOKIES', False)
SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = 'DENY'
SECURE_SSL_REDIRECT = env_bool('DJANGO_SECURE_SSL_REDIRECT', False)
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.getenv('DJANGO_LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'django.request': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
        'boxcards': {
            'handlers': ['console'],
            'level': os.getenv('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

# Box-card ledger
# Customers with no payment for this many days show up as defaulting.
BOXCARDS_DEFAULTING_DAYS = int(os.getenv('BOXCARDS_DEFAULTING_DAYS', '7'))
