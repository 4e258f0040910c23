"""
Tenant config read/write path.

Reads go through the cache (cache-aside). Writes commit to the primary
store first, then invalidate every cache key of the tenant before
returning, so any read that starts after a write returns sees the write.
"""
import logging
import re
from typing import Any, Dict, List

from sqlalchemy import select

from farm_tenancy.exceptions import NotFoundError, ValidationError
from farm_tenancy.models import Tenant
from farm_tenancy.models.audit_log import AuditAction
from farm_tenancy.models.custom_fields_config import custom_fields_id_for
from farm_tenancy.models.tenant import SUPPORTED_CURRENCIES, SUPPORTED_LANGUAGES
from farm_tenancy.services.audit_service import log_action
from farm_tenancy.services.cache_service import get_cache
from farm_tenancy.services.custom_fields_service import serialize_schema, validate_schema
from farm_tenancy.services.store_service import get_store
from farm_tenancy.utils.formatters import utcnow

logger = logging.getLogger(__name__)

_HEX_COLOR_RE = re.compile(r'^#[0-9A-Fa-f]{6}$')

# Request field -> model attribute
BRANDING_FIELDS = {
    'farmName': 'farm_name',
    'logoUrl': 'logo_url',
    'primaryColor': 'primary_color',
    'accentColor': 'accent_color',
    'language': 'language',
    'currency': 'currency',
    'timezone': 'timezone',
    'animalTypes': 'animal_types',
}


def get_tenant_config(tenant_id: str) -> Dict[str, Any]:
    """
    Tenant branding/locale config, through the cache.

    Raises:
        NotFoundError: Tenant absent or soft-deleted
    """
    store = get_store()
    cache = get_cache()

    def load():
        tenant = store.get_tenant(tenant_id)
        return tenant.to_dict() if tenant else None

    config = cache.get_or_load(cache.tenant_key(tenant_id, 'config'), load)
    if config is None:
        raise NotFoundError(f"Tenant {tenant_id} not found")
    return config


def _validate_branding(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Map request fields to model attributes, rejecting bad values."""
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No fields to update")

    unknown = sorted(set(changes) - set(BRANDING_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(unknown)}")

    values = {}
    for key, value in changes.items():
        if key == 'farmName':
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("farmName cannot be empty", payload={'field': key})
            value = value.strip()
        elif key in ('primaryColor', 'accentColor'):
            if not isinstance(value, str) or not _HEX_COLOR_RE.match(value):
                raise ValidationError(f"{key} must be a hex color like #1F7A3D", payload={'field': key})
            value = value.upper()
        elif key == 'language' and value not in SUPPORTED_LANGUAGES:
            raise ValidationError(f"language must be one of: {', '.join(SUPPORTED_LANGUAGES)}",
                                  payload={'field': key})
        elif key == 'currency' and value not in SUPPORTED_CURRENCIES:
            raise ValidationError(f"currency must be one of: {', '.join(SUPPORTED_CURRENCIES)}",
                                  payload={'field': key})
        elif key == 'timezone' and (not isinstance(value, str) or not value.strip()):
            raise ValidationError("timezone cannot be empty", payload={'field': key})
        elif key == 'animalTypes':
            if (not isinstance(value, list) or not value
                    or not all(isinstance(t, str) and t.strip() for t in value)):
                raise ValidationError("animalTypes must be a non-empty list of names", payload={'field': key})
            value = list(dict.fromkeys(t.strip().lower() for t in value))
        elif key == 'logoUrl' and value is not None and not isinstance(value, str):
            raise ValidationError("logoUrl must be a URL string", payload={'field': key})
        values[BRANDING_FIELDS[key]] = value
    return values


def _lock_tenant(session, tenant_id: str) -> Tenant:
    tenant = session.execute(
        select(Tenant)
        .where(Tenant.id == tenant_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if tenant is None or tenant.is_deleted:
        raise NotFoundError(f"Tenant {tenant_id} not found")
    return tenant


def update_tenant_branding(tenant_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Update branding/locale fields (camelCase keys, e.g. {'primaryColor': '#000000'}).

    Returns:
        dict: Updated config payload
    """
    values = _validate_branding(changes)
    store = get_store()

    with store.transaction() as session:
        tenant = _lock_tenant(session, tenant_id)
        for attr, value in values.items():
            setattr(tenant, attr, value)
        tenant.updated_at = utcnow()
        session.flush()
        result = tenant.to_dict()

    get_cache().invalidate_tenant(tenant_id)

    logger.info(f"[TENANT] Updated {tenant_id}: {', '.join(sorted(changes))}")
    log_action(AuditAction.TENANT_UPDATED, 'tenant', resource_id=tenant_id, tenant_id=tenant_id,
               details={'fields': sorted(changes)})
    return result


def get_custom_fields(tenant_id: str) -> List[Dict[str, Any]]:
    """Tenant custom-fields schema, through the cache."""
    store = get_store()
    cache = get_cache()

    def load():
        if store.get_tenant(tenant_id) is None:
            return None
        config = store.get_custom_fields_config(tenant_id)
        return list(config.fields or []) if config else []

    fields = cache.get_or_load(cache.tenant_key(tenant_id, 'custom_fields'), load)
    if fields is None:
        raise NotFoundError(f"Tenant {tenant_id} not found")
    return fields


def update_custom_fields(tenant_id: str, raw_fields: Any) -> List[Dict[str, Any]]:
    """
    Replace the tenant's custom-fields schema after validating it.

    Returns:
        list: Stored field definitions (with generated ids)
    """
    fields = serialize_schema(validate_schema(raw_fields))
    store = get_store()

    with store.transaction() as session:
        _lock_tenant(session, tenant_id)
        store.upsert_custom_fields_config(session, {
            'id': custom_fields_id_for(tenant_id),
            'tenant_id': tenant_id,
            'fields': fields,
            'updated_at': utcnow(),
        })

    get_cache().invalidate_tenant(tenant_id)

    logger.info(f"[TENANT] Custom fields for {tenant_id}: {len(fields)} definitions")
    log_action(AuditAction.CUSTOM_FIELDS_UPDATED, 'custom_fields_config', resource_id=tenant_id,
               tenant_id=tenant_id, details={'count': len(fields)})
    return fields


def soft_delete_tenant(tenant_id: str) -> Dict[str, Any]:
    """
    Soft-delete a tenant (sets deleted_at) and cancel its subscription.

    Rows are never removed.
    """
    store = get_store()
    now = utcnow()

    with store.transaction() as session:
        tenant = _lock_tenant(session, tenant_id)
        tenant.deleted_at = now
        tenant.updated_at = now
        subscription = store.get_subscription_for_update(session, tenant_id)
        if subscription is not None and not subscription.is_cancelled:
            subscription.status = 'cancelled'
            subscription.updated_at = now
        session.flush()
        result = tenant.to_dict()

    get_cache().invalidate_tenant(tenant_id)

    logger.info(f"[TENANT] Soft-deleted {tenant_id}")
    log_action(AuditAction.TENANT_DELETED, 'tenant', resource_id=tenant_id, tenant_id=tenant_id)
    return result
