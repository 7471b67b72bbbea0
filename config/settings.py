import os
import dj_database_url
from decimal import Decimal
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

# Security
DEBUG = os.getenv('DEBUG', '0') == '1'
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-key-CHANGE-IN-PRODUCTION')

# Parse ALLOWED_HOSTS from env (comma-separated)
ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', '*').split(',')

# --- 1. APPS ---
SHARED_APPS = (
    'django_tenants',
    'schools',              # Public Tenant Model
    'django.contrib.contenttypes',
)

TENANT_APPS = (
    'django.contrib.contenttypes',

    #Local Apps
    'core',
    'academics',
    'students',
    'gradebook',
    'finance',
)

INSTALLED_APPS = list(SHARED_APPS) + [app for app in TENANT_APPS if app not in SHARED_APPS]

TENANT_MODEL = "schools.School"
TENANT_DOMAIN_MODEL = "schools.Domain"

# --- 2. MIDDLEWARE ---
# The engine is called by the surrounding service; only tenant resolution lives here.
MIDDLEWARE = [
    'django_tenants.middleware.main.TenantMainMiddleware',
    'django.middleware.common.CommonMiddleware',
]

# --- 3. DATABASE (Multi-Tenant) ---
DATABASES = {
    'default': dj_database_url.config(
        default=os.getenv('DATABASE_URL', 'postgresql://postgres:postgres@db:5432/school_db'),
        engine='django_tenants.postgresql_backend',
        conn_max_age=600,  # Connection pooling
        conn_health_checks=True,  # Health checks
    )
}
DATABASE_ROUTERS = ('django_tenants.routers.TenantSyncRouter',)

# --- 4. CACHE ---
CACHES = {
    'default': {
        'BACKEND': os.getenv('CACHE_BACKEND', 'django.core.cache.backends.locmem.LocMemCache'),
        'LOCATION': os.getenv('CACHE_LOCATION', 'school-engine'),
    }
}

# --- 5. GRADEBOOK ---
# Overrides for gradebook/config.py defaults.
GRADEBOOK_DEFAULT_PASSING_GRADE = Decimal(os.getenv('DEFAULT_PASSING_GRADE', '60'))
GRADEBOOK_BUDGET_EPSILON = Decimal(os.getenv('BUDGET_EPSILON', '0.001'))

# --- 6. LOGGING ---
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {message}',
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
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.getenv('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'gradebook': {
            'handlers': ['console'],
            'level': os.getenv('ENGINE_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'finance': {
            'handlers': ['console'],
            'level': os.getenv('ENGINE_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

# --- 7. INTERNATIONALIZATION ---
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# --- 8. DEFAULT PRIMARY KEY ---
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
