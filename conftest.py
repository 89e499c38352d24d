"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'propdesk-tests',
        }
    }
    settings.PERMISSION_CACHE = {
        'BACKEND': 'apps.rbac.cache.PermissionCache',
        'TTL': 300,
        'OPTIONS': {},
    }
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    settings.RATELIMIT_ENABLE = False
    settings.CELERY_TASK_ALWAYS_EAGER = True
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def reset_permission_cache():
    """Every test starts with an empty permission cache."""
    from apps.rbac.cache import get_permission_cache
    get_permission_cache().invalidate_all()
    yield
    get_permission_cache().invalidate_all()


@pytest.fixture
def api_factory():
    """Create an API request factory."""
    from rest_framework.test import APIRequestFactory
    return APIRequestFactory()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def roles(db):
    """
    Seed the role ladder.

    Returns:
        dict: role slug -> Role
    """
    from apps.rbac.models import Role

    ladder = [
        (Role.DEVELOPER, 'Developer', 999),
        (Role.WEB_OWNER, 'Web Owner', 100),
        (Role.STAFF, 'Staff', 80),
        (Role.HOUSE_OWNER, 'House Owner', 60),
        (Role.CARETAKER, 'Caretaker', 40),
    ]
    return {
        slug: Role.objects.create(slug=slug, name=name, rank=rank)
        for slug, name, rank in ladder
    }


@pytest.fixture
def role_limits(roles):
    """Default login-as allow-lists per role."""
    from apps.rbac.models import Role, RoleLimit

    allow = {
        Role.WEB_OWNER: [Role.STAFF, Role.HOUSE_OWNER, Role.CARETAKER],
        Role.STAFF: [Role.HOUSE_OWNER, Role.CARETAKER],
        Role.HOUSE_OWNER: [Role.CARETAKER],
        Role.CARETAKER: [],
    }
    return {
        slug: RoleLimit.objects.create(role=roles[slug], can_login_as=allowed)
        for slug, allowed in allow.items()
    }


@pytest.fixture
def make_user(roles):
    """
    Factory for users.

    Usage:
        user = make_user('staff', parent=web_owner)
    """
    from apps.rbac.models import User

    counter = {'n': 0}

    def _make(role_slug, parent=None, email=None, password='SecurePass123', **extra):
        counter['n'] += 1
        return User.objects.create_user(
            email or f"{role_slug}{counter['n']}@example.com",
            password,
            name=extra.pop('name', f"{role_slug.title()} {counter['n']}"),
            role=roles[role_slug],
            parent=parent,
            **extra
        )

    return _make


@pytest.fixture
def developer(make_user):
    return make_user('developer', email='dev@example.com')


@pytest.fixture
def web_owner(make_user):
    return make_user('web_owner', email='owner@example.com')


@pytest.fixture
def staff_user(make_user, web_owner):
    return make_user('staff', parent=web_owner, email='staff@example.com')


@pytest.fixture
def house_owner(make_user, staff_user):
    return make_user('house_owner', parent=staff_user, email='landlord@example.com')


@pytest.fixture
def caretaker(make_user, house_owner):
    return make_user('caretaker', parent=house_owner, email='caretaker@example.com')


@pytest.fixture
def permissions(db):
    """
    Create a small permission catalogue.

    Returns:
        dict: key -> Permission
    """
    from apps.rbac.models import Permission

    keys = [
        'houses.view', 'houses.create', 'houses.edit', 'houses.delete',
        'flats.view', 'flats.create',
        'users.view', 'users.create', 'users.manage', 'users.login_as',
        'tokens.view', 'tokens.create',
        'staff.view', 'staff.manage', 'permissions.view', 'cache.manage',
    ]
    return {
        key: Permission.objects.create(key=key, description=key.replace('.', ' '))
        for key in keys
    }
