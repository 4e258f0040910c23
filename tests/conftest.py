import pytest
import uuid

import redis

from config import TestConfig
from farm_tenancy import create_app
from farm_tenancy import database
from farm_tenancy.database import create_all, drop_all, get_session
from farm_tenancy.services import cache_service
from farm_tenancy.services.application_service import approve_application, start_review, submit_application


class FakePipeline:
    """Buffers commands and applies them on execute(), like a redis-py pipeline."""

    def __init__(self, client):
        self._client = client
        self._commands = []

    def delete(self, key):
        self._commands.append(('delete', key))
        return self

    def incr(self, key):
        self._commands.append(('incr', key))
        return self

    def execute(self):
        self._client._check()
        if self._client.fail_executes:
            self._client.fail_executes -= 1
            self._commands = []
            raise redis.exceptions.ConnectionError('Connection reset during pipeline')
        results = []
        for command, key in self._commands:
            if command == 'delete':
                results.append(1 if self._client.data.pop(key, None) is not None else 0)
            else:
                value = int(self._client.data.get(key, 0)) + 1
                self._client.data[key] = str(value)
                results.append(value)
        self._commands = []
        return results


class FakeRedis:
    """In-memory stand-in for the handful of redis commands the cache uses."""

    def __init__(self):
        self.data = {}
        self.fail = False
        self.fail_executes = 0
        self.set_calls = 0

    def _check(self):
        if self.fail:
            raise redis.exceptions.ConnectionError('Redis is down')

    def ping(self):
        self._check()
        return True

    def mget(self, keys):
        self._check()
        return [self.data.get(key) for key in keys]

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self._check()
        self.set_calls += 1
        self.data[key] = value
        return True

    def pipeline(self):
        return FakePipeline(self)


@pytest.fixture(scope='function')
def fake_redis():
    return FakeRedis()


@pytest.fixture(scope='function')
def app(tmp_path, monkeypatch, fake_redis):
    """Create application instance for testing (file-backed SQLite, fake Redis)."""
    monkeypatch.setattr(cache_service.redis, 'from_url', lambda *args, **kwargs: fake_redis)

    class _Config(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'farm.db'}"

    app = create_app(_Config)
    create_all()
    yield app
    database.db_session.remove()
    drop_all()
    database.engine.dispose()


@pytest.fixture(scope='function')
def app_ctx(app):
    """Push an application context for service-level tests."""
    with app.app_context():
        yield app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app_ctx):
    """Request-scoped database session."""
    session = get_session()
    yield session
    session.rollback()


@pytest.fixture
def cache(app_ctx):
    return cache_service.get_cache()


def _identity_headers(user_id='user_1', tenant_id=None, platform_role=None, org_role=None):
    headers = {'X-User-Id': user_id}
    if tenant_id:
        headers['X-Tenant-Id'] = tenant_id
    if platform_role:
        headers['X-Platform-Role'] = platform_role
    if org_role:
        headers['X-Org-Role'] = org_role
    return headers


@pytest.fixture
def identity_headers():
    """Build gateway identity headers."""
    return _identity_headers


@pytest.fixture
def admin_headers():
    return _identity_headers(user_id='admin_1', platform_role='super_admin')


def _application_payload(**overrides):
    """Valid submission body; override any field."""
    suffix = str(uuid.uuid4())[:8]
    payload = {
        'farmName': f'Green Valley Dairy {suffix}',
        'ownerName': 'Ahmed Khan',
        'email': f'owner-{suffix}@example.com',
        'phone': '+923001234567',
        'city': 'Lahore',
        'province': 'Punjab',
        'animalTypes': ['cow', 'buffalo'],
        'estimatedAnimals': 40,
        'requestedPlan': 'professional',
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def application_payload():
    """Build a valid submission body."""
    return _application_payload


@pytest.fixture
def make_application(app_ctx):
    """Submit an application and return its payload."""
    def _make(applicant_id='applicant_1', **overrides):
        return submit_application(applicant_id, _application_payload(**overrides))
    return _make


@pytest.fixture
def provisioned_tenant(make_application):
    """Approve a free-plan application and return the provisioned tenant payload."""
    application = make_application(requestedPlan='free')
    start_review(application['id'], 'admin_1')
    result = approve_application(application['id'], 'admin_1', tenant_id=f'org_{uuid.uuid4().hex[:10]}')
    return result['tenant']
