"""
Test settings: a single SQLite schema without the tenant machinery.

Each tenant's schema holds the same TENANT_APPS tables, so the engine is
exercised here exactly as it runs inside one tenant.
"""
from .settings import *  # noqa: F401,F403

INSTALLED_APPS = [app for app in TENANT_APPS if app != 'django_tenants']  # noqa: F405

MIDDLEWARE = []

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}
DATABASE_ROUTERS = []

# SchoolSettings is cached; a shared cache would leak thresholds between tests.
CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.dummy.DummyCache',
    }
}

LOGGING['root']['level'] = 'WARNING'  # noqa: F405
for _name in ('gradebook', 'finance'):
    LOGGING['loggers'][_name]['level'] = 'WARNING'  # noqa: F405
