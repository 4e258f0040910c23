"""
Primary Store adapter.

Typed reads and "insert, on conflict by natural key do update" writes over
the relational system of record. Every multi-row write goes through
`PrimaryStore.transaction()`, which commits or rolls back as a unit and maps
driver errors onto the application's error taxonomy:

- unique / foreign-key violations -> ConflictError
- connection loss, timeouts, locked database -> StoreUnavailableError

No retries happen here; retry policy belongs to the caller.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select, exists
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy import text
from flask import current_app, has_app_context

from farm_tenancy.database import get_session
from farm_tenancy.exceptions import ConflictError, StoreUnavailableError
from farm_tenancy.models import (
    ApiKey, CustomFieldsConfig, FarmApplication, Payment, Subscription, Tenant
)
from farm_tenancy.utils.formatters import utcnow

logger = logging.getLogger(__name__)

CREATED = 'created'
UPDATED = 'updated'


def dialect_insert(session: Session, model):
    """Return the dialect-specific INSERT construct that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported on dialect '{dialect}'")
    return insert(model)


def _describe_integrity_error(error: IntegrityError) -> str:
    """Turn a driver constraint message into a stable, caller-facing message."""
    raw = str(getattr(error, 'orig', error)).lower()
    if 'slug' in raw:
        return 'A tenant with this slug already exists'
    if 'assigned_farm_id' in raw:
        return 'This Farm ID has already been assigned'
    if 'tenant_id' in raw and ('subscriptions' in raw or 'custom_fields_config' in raw):
        return 'This tenant has already been provisioned'
    if 'foreign key' in raw:
        return 'Referenced record does not exist'
    return 'The record conflicts with an existing one'


class PrimaryStore:
    """
    Adapter over the scoped SQLAlchemy session.

    Reads run on the current session; writes run inside `transaction()`.
    """

    def __init__(self, session_provider: Optional[Callable[[], Session]] = None,
                 default_timeout_ms: Optional[int] = None):
        self._session_provider = session_provider or get_session
        self.default_timeout_ms = default_timeout_ms

    @property
    def session(self) -> Session:
        session = self._session_provider()
        if session is None:
            raise StoreUnavailableError("Database not initialized")
        return session

    # ------------------------------------------------------------------
    # Transactions and error mapping
    # ------------------------------------------------------------------

    @contextmanager
    def guard(self):
        """Map driver errors raised by a block of store work onto store errors."""
        try:
            yield
        except IntegrityError as e:
            raise ConflictError(_describe_integrity_error(e)) from e
        except (OperationalError, InterfaceError) as e:
            logger.error(f"[STORE] Store unavailable: {e}")
            raise StoreUnavailableError() from e
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.error(f"[STORE] Connection invalidated: {e}")
                raise StoreUnavailableError() from e
            raise

    @contextmanager
    def transaction(self, timeout_ms: Optional[int] = None):
        """
        Run a block atomically.

        Yields the session; commits when the block returns and rolls back
        when it raises, so no partial rows survive a failure.
        """
        session = self.session
        try:
            with self.guard():
                self._apply_timeout(session, timeout_ms)
                yield session
                session.commit()
        except BaseException:
            self._safe_rollback(session)
            raise

    def _apply_timeout(self, session: Session, timeout_ms: Optional[int]) -> None:
        timeout_ms = timeout_ms if timeout_ms is not None else self.default_timeout_ms
        if not timeout_ms:
            return
        if session.get_bind().dialect.name == 'postgresql':
            session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

    def _safe_rollback(self, session: Session) -> None:
        try:
            session.rollback()
        except DBAPIError as e:
            logger.error(f"[STORE] Rollback failed: {e}")

    def _read(self, fn: Callable[[Session], Any]) -> Any:
        session = self.session
        try:
            with self.guard():
                return fn(session)
        except StoreUnavailableError:
            self._safe_rollback(session)
            raise

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def get_tenant(self, tenant_id: str, include_deleted: bool = False) -> Optional[Tenant]:
        def load(session):
            tenant = session.get(Tenant, tenant_id, populate_existing=True)
            if tenant is None or (tenant.is_deleted and not include_deleted):
                return None
            return tenant
        return self._read(load)

    def slug_exists(self, session: Session, slug: str) -> bool:
        return session.execute(select(exists().where(Tenant.slug == slug))).scalar()

    def add(self, session: Session, *instances) -> None:
        """Stage new rows inside a transaction and flush so constraints fire early."""
        session.add_all(instances)
        session.flush()

    def upsert_tenant(self, session: Session, values: Dict[str, Any],
                      update_fields: Iterable[str]) -> str:
        return self._upsert(session, Tenant, values, ['id'], update_fields)

    # ------------------------------------------------------------------
    # Subscriptions and config
    # ------------------------------------------------------------------

    def get_subscription(self, tenant_id: str) -> Optional[Subscription]:
        return self._read(
            lambda s: s.execute(
                select(Subscription)
                .where(Subscription.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        )

    def get_subscription_for_update(self, session: Session, tenant_id: str) -> Optional[Subscription]:
        return session.execute(
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_elapsed_trials(self, now) -> List[Subscription]:
        return self._read(
            lambda s: list(s.execute(
                select(Subscription).where(
                    Subscription.status == 'trial',
                    Subscription.trial_ends_at.is_not(None),
                    Subscription.trial_ends_at < now,
                )
            ).scalars())
        )

    def upsert_subscription(self, session: Session, values: Dict[str, Any],
                            update_fields: Iterable[str]) -> str:
        return self._upsert(session, Subscription, values, ['tenant_id'], update_fields)

    def get_custom_fields_config(self, tenant_id: str) -> Optional[CustomFieldsConfig]:
        return self._read(
            lambda s: s.execute(
                select(CustomFieldsConfig)
                .where(CustomFieldsConfig.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        )

    def upsert_custom_fields_config(self, session: Session, values: Dict[str, Any],
                                    update_fields: Iterable[str] = ('fields',)) -> str:
        return self._upsert(session, CustomFieldsConfig, values, ['tenant_id'], update_fields)

    # ------------------------------------------------------------------
    # Payments and API keys (legacy import only)
    # ------------------------------------------------------------------

    def upsert_payment(self, session: Session, values: Dict[str, Any]) -> str:
        return self._upsert(session, Payment, values, ['id'],
                            ['amount', 'currency', 'gateway', 'status', 'transaction_id', 'plan', 'metadata_json'])

    def upsert_api_key(self, session: Session, values: Dict[str, Any]) -> str:
        return self._upsert(session, ApiKey, values, ['id'],
                            ['name', 'description', 'permissions', 'is_active', 'last_used_at', 'expires_at'])

    # ------------------------------------------------------------------
    # Farm applications
    # ------------------------------------------------------------------

    def get_application(self, application_id: str) -> Optional[FarmApplication]:
        return self._read(lambda s: s.get(FarmApplication, application_id, populate_existing=True))

    def get_application_for_update(self, session: Session, application_id: str) -> Optional[FarmApplication]:
        """Load an application with a row lock (no-op lock on SQLite)."""
        return session.execute(
            select(FarmApplication)
            .where(FarmApplication.id == application_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_applications(self, applicant_id: Optional[str] = None, status: Optional[str] = None,
                          limit: int = 100, offset: int = 0) -> List[FarmApplication]:
        query = select(FarmApplication)
        if applicant_id:
            query = query.where(FarmApplication.applicant_id == applicant_id)
        if status:
            query = query.where(FarmApplication.status == status)
        query = query.order_by(FarmApplication.created_at.desc()).limit(limit).offset(offset)
        return self._read(lambda s: list(s.execute(query).scalars()))

    # ------------------------------------------------------------------
    # Upsert core
    # ------------------------------------------------------------------

    def row_exists(self, session: Session, model, key_fields: List[str], values: Dict[str, Any]) -> bool:
        columns = model.__table__.c
        conditions = [columns[field] == values[field] for field in key_fields]
        return session.execute(select(exists().where(*conditions))).scalar()

    def _upsert(self, session: Session, model, values: Dict[str, Any], key_fields: List[str],
                update_fields: Iterable[str]) -> str:
        """
        INSERT ... ON CONFLICT (key_fields) DO UPDATE SET update_fields.

        Returns 'created' or 'updated'. `values` uses mapped attribute names;
        they are translated to column names for the statement.
        """
        mapper = model.__mapper__
        row = {mapper.attrs[attr].columns[0].name: value for attr, value in values.items()}

        existed = self.row_exists(session, model, [mapper.attrs[k].columns[0].name for k in key_fields], row)

        statement = dialect_insert(session, model).values(**row)
        set_ = {}
        for attr in update_fields:
            column_name = mapper.attrs[attr].columns[0].name
            set_[column_name] = statement.excluded[column_name]
        if 'updated_at' in model.__table__.c:
            set_['updated_at'] = utcnow()

        statement = statement.on_conflict_do_update(
            index_elements=[mapper.attrs[k].columns[0].name for k in key_fields],
            set_=set_,
        )
        session.execute(statement)
        return UPDATED if existed else CREATED


def get_store() -> PrimaryStore:
    """PrimaryStore bound to the request session, using the configured statement timeout."""
    timeout_ms = None
    if has_app_context():
        timeout_ms = current_app.config.get('STORE_STATEMENT_TIMEOUT_MS')
    return PrimaryStore(default_timeout_ms=timeout_ms)
