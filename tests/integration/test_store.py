"""
Integration tests for PrimaryStore transactions and driver-error mapping.
"""

import pytest
from sqlalchemy import insert
from sqlalchemy.exc import DBAPIError, OperationalError

from farm_tenancy.exceptions import ConflictError, StoreUnavailableError
from farm_tenancy.models import FarmIdSequence
from farm_tenancy.services.store_service import PrimaryStore


@pytest.fixture
def store(app_ctx):
    return PrimaryStore()


def _insert_sequence(session, year, last_number=1):
    session.execute(insert(FarmIdSequence).values(year=year, last_number=last_number))


class TestTransaction:

    def test_commit(self, store, session):
        with store.transaction() as tx:
            _insert_sequence(tx, 2020, 3)

        session.expire_all()
        assert session.get(FarmIdSequence, 2020).last_number == 3

    def test_error_rolls_back_and_propagates(self, store, session):
        with pytest.raises(ValueError):
            with store.transaction() as tx:
                _insert_sequence(tx, 2020)
                raise ValueError('bad input')

        session.expire_all()
        assert session.get(FarmIdSequence, 2020) is None


class TestErrorMapping:
    """Driver errors are reported as store errors, with the transaction rolled back."""

    def test_integrity_error_becomes_conflict(self, store, session):
        with store.transaction() as tx:
            _insert_sequence(tx, 2020)

        with pytest.raises(ConflictError) as excinfo:
            with store.transaction() as tx:
                _insert_sequence(tx, 2021)
                _insert_sequence(tx, 2020)

        assert excinfo.value.status_code == 409
        session.expire_all()
        assert session.get(FarmIdSequence, 2021) is None

    def test_operational_error_becomes_store_unavailable(self, store, session):
        with pytest.raises(StoreUnavailableError) as excinfo:
            with store.transaction() as tx:
                _insert_sequence(tx, 2022)
                raise OperationalError('UPDATE farm_id_sequence', {}, Exception('server closed the connection'))

        assert excinfo.value.status_code == 503
        session.expire_all()
        assert session.get(FarmIdSequence, 2022) is None

    def test_invalidated_connection_becomes_store_unavailable(self, store):
        error = DBAPIError('SELECT 1', {}, Exception('connection lost'), connection_invalidated=True)
        with pytest.raises(StoreUnavailableError):
            with store.transaction():
                raise error

    def test_other_driver_errors_propagate(self, store):
        error = DBAPIError('SELECT 1', {}, Exception('syntax error'))
        with pytest.raises(DBAPIError):
            with store.transaction():
                raise error

    def test_session_usable_after_unavailable(self, store, session):
        with pytest.raises(StoreUnavailableError):
            with store.transaction():
                raise OperationalError('SELECT 1', {}, Exception('timeout'))

        with store.transaction() as tx:
            _insert_sequence(tx, 2023)
        session.expire_all()
        assert session.get(FarmIdSequence, 2023) is not None

    def test_read_error_becomes_store_unavailable(self, app_ctx):
        class LostConnection:
            rolled_back = False

            def get(self, *args, **kwargs):
                raise OperationalError('SELECT tenants', {}, Exception('could not connect'))

            def rollback(self):
                self.rolled_back = True

        session = LostConnection()
        store = PrimaryStore(session_provider=lambda: session)

        with pytest.raises(StoreUnavailableError):
            store.get_tenant('org_1')
        assert session.rolled_back
