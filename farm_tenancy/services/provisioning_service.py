"""
Tenant Provisioning.

Creates a tenant, its trial subscription and its empty custom-fields config
as one unit: every row is written inside the caller's store transaction,
so a failure at any step leaves nothing behind (including the Farm ID
sequence increment). Cache priming and auditing happen only after commit.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from farm_tenancy.blueprints.metrics import tenants_provisioned_total
from farm_tenancy.exceptions import ValidationError
from farm_tenancy.models import CustomFieldsConfig, Subscription, Tenant
from farm_tenancy.models.audit_log import AuditAction
from farm_tenancy.models.custom_fields_config import custom_fields_id_for
from farm_tenancy.models.subscription import subscription_id_for
from farm_tenancy.models.tenant import (
    DEFAULT_ACCENT_COLOR, DEFAULT_ANIMAL_TYPES, DEFAULT_CURRENCY, DEFAULT_LANGUAGE,
    DEFAULT_PRIMARY_COLOR, DEFAULT_TIMEZONE
)
from farm_tenancy.services.audit_service import log_action
from farm_tenancy.services.cache_service import get_cache
from farm_tenancy.services.farm_id_service import next_farm_id
from farm_tenancy.services.store_service import PrimaryStore, get_store
from farm_tenancy.services.subscription_service import (
    initial_subscription_values, limits_payload, validate_plan
)
from farm_tenancy.utils.formatters import generate_slug, utcnow

logger = logging.getLogger(__name__)

MAX_SLUG_ATTEMPTS = 100


@dataclass
class ProvisioningRequest:
    """Everything needed to create a tenant. Unset branding fields take platform defaults."""
    farm_name: str
    plan: str
    owner_id: str
    tenant_id: Optional[str] = None
    slug_basis: Optional[str] = None
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None
    accent_color: Optional[str] = None
    language: Optional[str] = None
    currency: Optional[str] = None
    timezone: Optional[str] = None
    animal_types: List[str] = field(default_factory=list)


@dataclass
class ProvisioningResult:
    tenant_id: str
    farm_id: str
    slug: str
    plan: str
    config: Dict[str, Any]
    subscription: Dict[str, Any]
    custom_fields: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tenantId': self.tenant_id,
            'farmId': self.farm_id,
            'slug': self.slug,
            'plan': self.plan,
            'config': self.config,
            'subscription': self.subscription,
        }


def generate_tenant_id() -> str:
    return f"tenant_{uuid.uuid4().hex[:16]}"


def unique_slug(store: PrimaryStore, session: Session, basis: str) -> str:
    """
    Slug derived from `basis`, suffixed with -2, -3... until unused.

    Two concurrent provisions can still pick the same candidate; the unique
    constraint then turns the loser into a ConflictError.
    """
    base = generate_slug(basis)
    candidate = base
    for suffix in range(2, MAX_SLUG_ATTEMPTS + 2):
        if not store.slug_exists(session, candidate):
            return candidate
        candidate = f"{base}-{suffix}"
    raise ValidationError(f"Could not find a free slug for '{basis}'")


def _build_tenant(request: ProvisioningRequest, tenant_id: str, slug: str, now) -> Tenant:
    return Tenant(
        id=tenant_id,
        slug=slug,
        farm_name=request.farm_name.strip(),
        logo_url=request.logo_url,
        primary_color=request.primary_color or DEFAULT_PRIMARY_COLOR,
        accent_color=request.accent_color or DEFAULT_ACCENT_COLOR,
        language=request.language or DEFAULT_LANGUAGE,
        currency=request.currency or DEFAULT_CURRENCY,
        timezone=request.timezone or DEFAULT_TIMEZONE,
        animal_types=list(request.animal_types or DEFAULT_ANIMAL_TYPES),
        created_at=now,
        updated_at=now,
    )


def _build_subscription(tenant_id: str, plan: str, now) -> Subscription:
    values = initial_subscription_values(tenant_id, plan, now=now)
    return Subscription(id=subscription_id_for(tenant_id), created_at=now, updated_at=now, **values)


def _build_custom_fields_config(tenant_id: str, now) -> CustomFieldsConfig:
    return CustomFieldsConfig(id=custom_fields_id_for(tenant_id), tenant_id=tenant_id, fields=[], updated_at=now)


def provision_tenant(session: Session, request: ProvisioningRequest,
                     store: Optional[PrimaryStore] = None) -> ProvisioningResult:
    """
    Write a new tenant inside the caller's transaction.

    Steps: allocate Farm ID, insert Tenant, insert trial Subscription,
    insert empty Custom Fields Config. Nothing is committed here; the
    caller's transaction commits or rolls back all of it.

    Raises:
        ValidationError: Missing farm name or unknown plan
        ConflictError: Tenant id or slug already taken (surfaced by the store)
    """
    if not request.farm_name or not request.farm_name.strip():
        raise ValidationError("Farm name is required", payload={'field': 'farmName'})
    validate_plan(request.plan)

    store = store or get_store()
    now = utcnow()
    tenant_id = request.tenant_id or generate_tenant_id()

    farm_id = next_farm_id(session, now.year)
    slug = unique_slug(store, session, request.slug_basis or request.farm_name)

    tenant = _build_tenant(request, tenant_id, slug, now)
    store.add(session, tenant)

    subscription = _build_subscription(tenant_id, request.plan, now)
    store.add(session, subscription)

    custom_fields = _build_custom_fields_config(tenant_id, now)
    store.add(session, custom_fields)

    logger.info(f"[PROVISION] Staged tenant {tenant_id} ({slug}) as {farm_id} on plan {request.plan}")
    return ProvisioningResult(
        tenant_id=tenant_id,
        farm_id=farm_id,
        slug=slug,
        plan=request.plan,
        config=tenant.to_dict(),
        subscription=subscription.to_dict(),
        custom_fields=list(custom_fields.fields),
    )


def finalize_provisioning(result: ProvisioningResult, actor_id: Optional[str] = None,
                          details: Optional[Dict[str, Any]] = None) -> None:
    """
    Post-commit side effects: reset and warm the tenant's cache, count, audit.

    Must only be called after the provisioning transaction committed.
    """
    cache = get_cache()
    tenant_id = result.tenant_id
    cache.invalidate_tenant(tenant_id)
    cache.prime(cache.tenant_key(tenant_id, 'config'), result.config)
    cache.prime(cache.tenant_key(tenant_id, 'subscription'), result.subscription)
    cache.prime(cache.tenant_key(tenant_id, 'limits'),
                limits_payload(result.plan, result.subscription['status']))
    cache.prime(cache.tenant_key(tenant_id, 'custom_fields'), result.custom_fields)

    tenants_provisioned_total.labels(plan=result.plan).inc()
    logger.info(f"[PROVISION] Tenant {tenant_id} provisioned with Farm ID {result.farm_id}")

    audit_details = {'farmId': result.farm_id, 'slug': result.slug, 'plan': result.plan}
    audit_details.update(details or {})
    log_action(AuditAction.TENANT_PROVISIONED, 'tenant', resource_id=tenant_id, tenant_id=tenant_id,
               details=audit_details, user_id=actor_id)


def provision_tenant_standalone(request: ProvisioningRequest,
                                actor_id: Optional[str] = None) -> ProvisioningResult:
    """Provision in a transaction of its own (admin tooling, no application involved)."""
    store = get_store()
    with store.transaction() as session:
        result = provision_tenant(session, request, store=store)
    finalize_provisioning(result, actor_id=actor_id)
    return result
