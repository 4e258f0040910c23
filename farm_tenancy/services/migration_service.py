"""
Legacy-store migration.

Copies tenant metadata from a legacy document-store export into the
primary store. Every row is written through PrimaryStore upserts keyed by
natural ids, so re-running the job updates rows instead of duplicating
them. Each tenant is migrated in its own transaction; a failing tenant is
recorded in the summary and the batch moves on.

Export layout (JSON):

    {
      "tenants": {
        "<tenant id>": {
          "config": {...},            # legacy config/main document
          "subscription": {...},      # legacy subscription/main document
          "customFields": {...},      # legacy config/customFields document
          "payments": {"<payment id>": {...}},
          "apiKeys": {"<key id>": {...}}
        }
      },
      "payments": [{"id": ..., "tenantId": ..., ...}]   # optional top-level collection
    }
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from farm_tenancy.exceptions import SaasError, ValidationError
from farm_tenancy.models import (
    ApiKey, CustomFieldsConfig, Payment, Subscription, Tenant,
    PAYMENT_GATEWAYS, PLAN_TIERS, SUBSCRIPTION_STATUSES
)
from farm_tenancy.models.audit_log import AuditAction
from farm_tenancy.models.custom_fields_config import custom_fields_id_for
from farm_tenancy.models.payment import PAYMENT_STATUSES
from farm_tenancy.models.subscription import subscription_id_for
from farm_tenancy.models.tenant import (
    DEFAULT_ACCENT_COLOR, DEFAULT_ANIMAL_TYPES, DEFAULT_CURRENCY, DEFAULT_LANGUAGE,
    DEFAULT_PRIMARY_COLOR, DEFAULT_TIMEZONE
)
from farm_tenancy.services.audit_service import log_action
from farm_tenancy.services.cache_service import get_cache
from farm_tenancy.services.custom_fields_service import serialize_schema, validate_schema
from farm_tenancy.services.store_service import CREATED, UPDATED, PrimaryStore, get_store
from farm_tenancy.services.subscription_service import initial_subscription_values
from farm_tenancy.utils.formatters import generate_slug, parse_datetime, utcnow

logger = logging.getLogger(__name__)

ENTITIES = ('tenants', 'subscriptions', 'custom_fields', 'payments', 'api_keys')

TENANT_UPDATE_FIELDS = (
    'farm_name', 'logo_url', 'primary_color', 'accent_color', 'language',
    'currency', 'timezone', 'animal_types', 'deleted_at',
)
SUBSCRIPTION_UPDATE_FIELDS = (
    'plan', 'status', 'gateway', 'renew_date', 'token', 'amount', 'currency', 'trial_ends_at',
)


# ----------------------------------------------------------------------
# Source
# ----------------------------------------------------------------------

@dataclass
class LegacyTenantDocuments:
    """Every legacy document that belongs to one tenant."""
    tenant_id: str
    config: Optional[Dict[str, Any]] = None
    subscription: Optional[Dict[str, Any]] = None
    custom_fields: Optional[Dict[str, Any]] = None
    payments: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    api_keys: Dict[str, Dict[str, Any]] = field(default_factory=dict)


def _keyed(documents: Any) -> Dict[str, Dict[str, Any]]:
    """Accept {id: doc} or [{"id": ..., ...}] collections."""
    if not documents:
        return {}
    if isinstance(documents, dict):
        return {str(doc_id): dict(doc or {}) for doc_id, doc in documents.items()}
    if isinstance(documents, list):
        keyed = {}
        for doc in documents:
            if not isinstance(doc, dict) or not doc.get('id'):
                raise ValidationError("Collection documents need an 'id'")
            keyed[str(doc['id'])] = dict(doc)
        return keyed
    raise ValidationError("Collections must be objects or lists")


class JsonLegacyStore:
    """Legacy export loaded from a JSON file (or an already-parsed dict)."""

    def __init__(self, data: Dict[str, Any]):
        if not isinstance(data, dict) or not isinstance(data.get('tenants', {}), dict):
            raise ValidationError("Legacy export must contain a 'tenants' object")
        self._tenants = data.get('tenants', {})
        self._loose_payments = _keyed(data.get('payments'))

    @classmethod
    def from_path(cls, path: str) -> 'JsonLegacyStore':
        with open(path, 'r', encoding='utf-8') as handle:
            return cls(json.load(handle))

    def tenant_ids(self) -> List[str]:
        return sorted(self._tenants)

    def load(self, tenant_id: str) -> Optional[LegacyTenantDocuments]:
        raw = self._tenants.get(tenant_id)
        if raw is None:
            return None
        payments = {pid: doc for pid, doc in self._loose_payments.items() if doc.get('tenantId') == tenant_id}
        payments.update(_keyed(raw.get('payments')))
        return LegacyTenantDocuments(
            tenant_id=tenant_id,
            config=raw.get('config'),
            subscription=raw.get('subscription'),
            custom_fields=raw.get('customFields'),
            payments=payments,
            api_keys=_keyed(raw.get('apiKeys')),
        )

    def __iter__(self) -> Iterator[LegacyTenantDocuments]:
        for tenant_id in self.tenant_ids():
            yield self.load(tenant_id)


# ----------------------------------------------------------------------
# Summary
# ----------------------------------------------------------------------

@dataclass
class MigrationSummary:
    dry_run: bool = False
    tenants_processed: int = 0
    counts: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: {entity: {'created': 0, 'updated': 0} for entity in ENTITIES}
    )
    errors: List[str] = field(default_factory=list)

    def add(self, entity: str, outcome: str, amount: int = 1) -> None:
        self.counts[entity][outcome] += amount

    def merge(self, other: 'MigrationSummary') -> None:
        for entity, outcomes in other.counts.items():
            for outcome, amount in outcomes.items():
                self.counts[entity][outcome] += amount

    def total(self, entity: str) -> int:
        return sum(self.counts[entity].values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dryRun': self.dry_run,
            'tenantsProcessed': self.tenants_processed,
            'counts': {entity: dict(outcomes) for entity, outcomes in self.counts.items()},
            'errors': list(self.errors),
        }


# ----------------------------------------------------------------------
# Mapping (legacy document -> column values)
# ----------------------------------------------------------------------

def _timestamp(doc: Dict[str, Any], key: str, default=None):
    try:
        value = parse_datetime(doc.get(key))
    except ValueError as e:
        raise ValidationError(f"{key}: {e}")
    return value if value is not None else default


def _one_of(value: Any, allowed, label: str) -> Any:
    if value not in allowed:
        raise ValidationError(f"Unknown {label} '{value}'")
    return value


def map_tenant(tenant_id: str, config: Dict[str, Any], now) -> Dict[str, Any]:
    slug = config.get('subdomain') or config.get('slug') or tenant_id[:8]
    return {
        'id': tenant_id,
        'slug': generate_slug(slug),
        'farm_name': config.get('farmName') or 'Unnamed Farm',
        'logo_url': config.get('logoUrl'),
        'primary_color': config.get('primaryColor') or DEFAULT_PRIMARY_COLOR,
        'accent_color': config.get('accentColor') or DEFAULT_ACCENT_COLOR,
        'language': config.get('language') or DEFAULT_LANGUAGE,
        'currency': config.get('currency') or DEFAULT_CURRENCY,
        'timezone': config.get('timezone') or DEFAULT_TIMEZONE,
        'animal_types': list(config.get('animalTypes') or DEFAULT_ANIMAL_TYPES),
        'created_at': _timestamp(config, 'createdAt', now),
        'updated_at': _timestamp(config, 'updatedAt', now),
        'deleted_at': _timestamp(config, 'deletedAt'),
    }


def map_subscription(tenant_id: str, doc: Dict[str, Any], now) -> Dict[str, Any]:
    return {
        'id': subscription_id_for(tenant_id),
        'tenant_id': tenant_id,
        'plan': _one_of(doc.get('plan') or 'free', PLAN_TIERS, 'plan'),
        'status': _one_of(doc.get('status') or 'trial', SUBSCRIPTION_STATUSES, 'subscription status'),
        'gateway': _one_of(doc.get('gateway') or 'bank_transfer', PAYMENT_GATEWAYS, 'gateway'),
        'renew_date': _timestamp(doc, 'renewDate', now),
        'trial_ends_at': _timestamp(doc, 'trialEndsAt'),
        'token': doc.get('token'),
        'amount': int(doc.get('amount') or 0),
        'currency': doc.get('currency') or 'PKR',
        'created_at': _timestamp(doc, 'createdAt', now),
        'updated_at': _timestamp(doc, 'updatedAt', now),
    }


def default_subscription(tenant_id: str, now) -> Dict[str, Any]:
    """Free-plan trial for a legacy tenant that never had a subscription document."""
    values = initial_subscription_values(tenant_id, 'free', now)
    values.update(id=subscription_id_for(tenant_id), created_at=now, updated_at=now)
    return values


def default_custom_fields(tenant_id: str, now) -> Dict[str, Any]:
    return {'id': custom_fields_id_for(tenant_id), 'tenant_id': tenant_id, 'fields': [], 'updated_at': now}


def map_custom_fields(tenant_id: str, doc: Dict[str, Any], now) -> Dict[str, Any]:
    return {
        'id': custom_fields_id_for(tenant_id),
        'tenant_id': tenant_id,
        'fields': serialize_schema(validate_schema(doc.get('fields') or [])),
        'updated_at': _timestamp(doc, 'updatedAt', now),
    }


def map_payment(tenant_id: str, payment_id: str, doc: Dict[str, Any], now) -> Dict[str, Any]:
    return {
        'id': payment_id,
        'tenant_id': tenant_id,
        'amount': int(doc.get('amount') or 0),
        'currency': doc.get('currency') or 'PKR',
        'gateway': _one_of(doc.get('gateway') or 'bank_transfer', PAYMENT_GATEWAYS, 'gateway'),
        'status': _one_of(doc.get('status') or 'pending', PAYMENT_STATUSES, 'payment status'),
        'transaction_id': doc.get('transactionId'),
        'plan': _one_of(doc.get('plan') or 'free', PLAN_TIERS, 'plan'),
        'metadata_json': doc.get('metadata') or {},
        'created_at': _timestamp(doc, 'createdAt', now),
        'updated_at': _timestamp(doc, 'updatedAt', now),
    }


def map_api_key(tenant_id: str, key_id: str, doc: Dict[str, Any], now) -> Dict[str, Any]:
    if not doc.get('keyHash') or not doc.get('name'):
        raise ValidationError(f"API key {key_id} is missing its name or hash")
    return {
        'id': key_id,
        'tenant_id': tenant_id,
        'name': doc['name'],
        'description': doc.get('description'),
        'key_hash': doc['keyHash'],
        'key_prefix': doc.get('keyPrefix') or '',
        'permissions': list(doc.get('permissions') or []),
        'is_active': doc.get('isActive') is not False,
        'last_used_at': _timestamp(doc, 'lastUsedAt'),
        'expires_at': _timestamp(doc, 'expiresAt'),
        'created_at': _timestamp(doc, 'createdAt', now),
        'created_by': doc.get('createdBy') or 'legacy',
    }


# ----------------------------------------------------------------------
# Migration
# ----------------------------------------------------------------------

def _write(store: PrimaryStore, session, model, values: Dict[str, Any], key_fields, dry_run: bool, upsert) -> str:
    """Upsert, or in dry-run mode only decide whether it would create or update."""
    if dry_run:
        mapper = model.__mapper__
        columns = {mapper.attrs[k].columns[0].name: values[k] for k in key_fields}
        return UPDATED if store.row_exists(session, model, list(columns), columns) else CREATED
    return upsert(session, values)


def _write_default(store: PrimaryStore, session, model, values: Dict[str, Any], key_fields, dry_run: bool,
                   upsert) -> Optional[str]:
    """Create a default row only when none exists yet; an existing row is left alone."""
    if store.row_exists(session, model, key_fields, values):
        return None
    return CREATED if dry_run else upsert(session, values)


def _migrate_tenant(store: PrimaryStore, documents: LegacyTenantDocuments, dry_run: bool) -> MigrationSummary:
    """Migrate one tenant. Raises on the first problem; nothing is kept in that case."""
    tenant_id = documents.tenant_id
    if not documents.config:
        raise ValidationError(f"Tenant {tenant_id} has no config document")

    now = utcnow()
    counts = MigrationSummary(dry_run=dry_run)

    # Map everything up front so bad data fails before any write
    tenant_row = map_tenant(tenant_id, documents.config, now)
    subscription_row = map_subscription(tenant_id, documents.subscription, now) if documents.subscription else None
    custom_fields_row = (map_custom_fields(tenant_id, documents.custom_fields, now)
                         if documents.custom_fields else None)
    # A tenant never exists without its subscription and custom-fields config
    default_subscription_row = None if subscription_row else default_subscription(tenant_id, now)
    default_custom_fields_row = None if custom_fields_row else default_custom_fields(tenant_id, now)
    payment_rows = [map_payment(tenant_id, pid, doc, now) for pid, doc in documents.payments.items()]
    api_key_rows = [map_api_key(tenant_id, kid, doc, now) for kid, doc in documents.api_keys.items()]

    def run(session):
        counts.add('tenants', _write(
            store, session, Tenant, tenant_row, ['id'], dry_run,
            lambda s, v: store.upsert_tenant(s, v, TENANT_UPDATE_FIELDS)))
        if subscription_row:
            counts.add('subscriptions', _write(
                store, session, Subscription, subscription_row, ['tenant_id'], dry_run,
                lambda s, v: store.upsert_subscription(s, v, SUBSCRIPTION_UPDATE_FIELDS)))
        else:
            outcome = _write_default(store, session, Subscription, default_subscription_row, ['tenant_id'], dry_run,
                                     lambda s, v: store.upsert_subscription(s, v, SUBSCRIPTION_UPDATE_FIELDS))
            if outcome:
                counts.add('subscriptions', outcome)
        if custom_fields_row:
            counts.add('custom_fields', _write(
                store, session, CustomFieldsConfig, custom_fields_row, ['tenant_id'], dry_run,
                store.upsert_custom_fields_config))
        else:
            outcome = _write_default(store, session, CustomFieldsConfig, default_custom_fields_row, ['tenant_id'],
                                     dry_run, store.upsert_custom_fields_config)
            if outcome:
                counts.add('custom_fields', outcome)
        for row in payment_rows:
            counts.add('payments', _write(store, session, Payment, row, ['id'], dry_run, store.upsert_payment))
        for row in api_key_rows:
            counts.add('api_keys', _write(store, session, ApiKey, row, ['id'], dry_run, store.upsert_api_key))

    if dry_run:
        session = store.session
        try:
            with store.guard():
                run(session)
        finally:
            session.rollback()
    else:
        with store.transaction() as session:
            run(session)
        get_cache().invalidate_tenant(tenant_id)

    return counts


def migrate(source, dry_run: bool = False, tenant_id: Optional[str] = None,
            store: Optional[PrimaryStore] = None) -> MigrationSummary:
    """
    Copy tenants from a legacy source into the primary store.

    Args:
        source: JsonLegacyStore (or anything with tenant_ids() and load(tenant_id))
        dry_run: Compute counts without writing
        tenant_id: Migrate only this tenant

    Returns:
        MigrationSummary: created/updated counts per entity and per-tenant errors
    """
    store = store or get_store()
    summary = MigrationSummary(dry_run=dry_run)
    tenant_ids = [tenant_id] if tenant_id else source.tenant_ids()

    logger.info(f"[MIGRATION] Starting {'dry run' if dry_run else 'migration'} for {len(tenant_ids)} tenant(s)")

    for current_id in tenant_ids:
        documents = source.load(current_id)
        if documents is None:
            summary.errors.append(f"Tenant {current_id} not found in legacy store")
            continue
        try:
            summary.merge(_migrate_tenant(store, documents, dry_run))
            summary.tenants_processed += 1
        except SaasError as e:
            logger.warning(f"[MIGRATION] Tenant {current_id} failed: {e.message}")
            store.session.rollback()
            summary.errors.append(f"Error migrating {current_id}: {e.message}")
        except Exception as e:
            logger.exception(f"[MIGRATION] Tenant {current_id} failed unexpectedly")
            store.session.rollback()
            summary.errors.append(f"Error migrating {current_id}: {e}")

    logger.info(
        f"[MIGRATION] Done: {summary.tenants_processed} tenant(s), "
        f"{sum(summary.total(e) for e in ENTITIES)} row(s), {len(summary.errors)} error(s)"
    )
    if not dry_run:
        log_action(AuditAction.MIGRATION_RUN, 'migration', details=summary.to_dict())
    return summary
