"""
Subscription Service for tenant plans, billing status and plan limits.

Status is driven by billing events through an explicit transition table;
plan limits are a pure function of the plan tier. Status gates access,
tier gates capacity. Reads of a tenant's subscription and limits go
through the cache; every mutation invalidates the tenant's keys before
returning.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from flask import current_app, has_app_context

from farm_tenancy.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from farm_tenancy.models import PAYMENT_GATEWAYS, PLAN_TIERS
from farm_tenancy.models.audit_log import AuditAction
from farm_tenancy.services.audit_service import log_action
from farm_tenancy.services.cache_service import get_cache
from farm_tenancy.services.store_service import get_store
from farm_tenancy.utils.formatters import rupees, utcnow

logger = logging.getLogger(__name__)

UNLIMITED = -1

DEFAULT_TRIAL_DAYS = 14
DEFAULT_RENEWAL_PERIOD_DAYS = 30

# Prices in paisa (PKR minor units). Enterprise is priced per contract.
SUBSCRIPTION_PLANS: Dict[str, Dict[str, Any]] = {
    'free': {
        'name': 'Free',
        'price': 0,
        'maxAnimals': 5,
        'maxUsers': 1,
        'features': ['basic_milk_logs', 'mobile_app', 'up_to_5_animals', '1_user'],
    },
    'professional': {
        'name': 'Professional',
        'price': 499900,
        'maxAnimals': 100,
        'maxUsers': 5,
        'features': [
            'full_analytics', 'mobile_app', 'breeding_management', 'health_records',
            'expense_tracking', 'email_support', 'up_to_100_animals', '5_users',
        ],
    },
    'farm': {
        'name': 'Farm',
        'price': 1299900,
        'maxAnimals': 500,
        'maxUsers': 15,
        'features': [
            'all_professional_features', 'iot_integration', 'api_access', 'advanced_analytics',
            'sms_alerts', 'priority_support', 'up_to_500_animals', '15_users',
        ],
    },
    'enterprise': {
        'name': 'Enterprise',
        'price': None,
        'maxAnimals': UNLIMITED,
        'maxUsers': UNLIMITED,
        'features': [
            'all_farm_features', 'white_label', 'dedicated_support', 'on_premise_option',
            'custom_integrations', 'sla_guarantee', 'unlimited_animals', 'unlimited_users',
        ],
    },
}

# Umbrella features that grant everything a lower plan has
_INHERITED_FEATURES = {
    'all_professional_features': 'professional',
    'all_farm_features': 'farm',
}

# Billing events
RENEWAL_SUCCEEDED = 'renewal_succeeded'
RENEWAL_FAILED = 'renewal_failed'
TRIAL_ELAPSED = 'trial_elapsed'
CANCELLED = 'cancelled'
APPROVAL_REQUESTED = 'approval_requested'

BILLING_EVENTS = (RENEWAL_SUCCEEDED, RENEWAL_FAILED, TRIAL_ELAPSED, CANCELLED, APPROVAL_REQUESTED)

# status -> {event: target status}
SUBSCRIPTION_TRANSITIONS: Dict[str, Dict[str, str]] = {
    'trial': {
        RENEWAL_SUCCEEDED: 'active',
        RENEWAL_FAILED: 'past_due',
        TRIAL_ELAPSED: 'expired',
        CANCELLED: 'cancelled',
        APPROVAL_REQUESTED: 'pending_approval',
    },
    'active': {
        RENEWAL_SUCCEEDED: 'active',
        RENEWAL_FAILED: 'past_due',
        CANCELLED: 'cancelled',
        APPROVAL_REQUESTED: 'pending_approval',
    },
    'past_due': {
        RENEWAL_SUCCEEDED: 'active',
        RENEWAL_FAILED: 'past_due',
        CANCELLED: 'cancelled',
        APPROVAL_REQUESTED: 'pending_approval',
    },
    'pending_approval': {
        RENEWAL_SUCCEEDED: 'active',
        RENEWAL_FAILED: 'past_due',
        CANCELLED: 'cancelled',
    },
    'expired': {
        RENEWAL_SUCCEEDED: 'active',
        CANCELLED: 'cancelled',
        APPROVAL_REQUESTED: 'pending_approval',
    },
    'cancelled': {},
}


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def trial_days() -> int:
    return _config('TRIAL_DAYS', DEFAULT_TRIAL_DAYS)


def renewal_period_days() -> int:
    return _config('RENEWAL_PERIOD_DAYS', DEFAULT_RENEWAL_PERIOD_DAYS)


# ----------------------------------------------------------------------
# Plan catalogue (pure)
# ----------------------------------------------------------------------

def validate_plan(plan: str) -> str:
    """Return the plan if it is a known tier, else raise ValidationError."""
    if plan not in PLAN_TIERS:
        raise ValidationError(
            f"Unknown plan '{plan}'. Expected one of: {', '.join(PLAN_TIERS)}",
            payload={'field': 'plan'}
        )
    return plan


def is_paid_plan(plan: str) -> bool:
    return plan != 'free'


def plan_price(plan: str) -> int:
    """Price in paisa; 0 for free and for contract-priced plans."""
    return SUBSCRIPTION_PLANS[validate_plan(plan)]['price'] or 0


def plan_features(plan: str) -> List[str]:
    """Feature list for a plan, with umbrella features expanded."""
    features: List[str] = []
    for feature in SUBSCRIPTION_PLANS[plan]['features']:
        inherited = _INHERITED_FEATURES.get(feature)
        if inherited:
            features.extend(f for f in plan_features(inherited) if f not in features)
        if feature not in features:
            features.append(feature)
    return features


def get_plan_limits(plan: str) -> Dict[str, Any]:
    """
    Capacity limits for a plan tier. Independent of subscription status.

    Examples:
        get_plan_limits('free') -> {'plan': 'free', 'maxAnimals': 5, 'maxUsers': 1, 'features': [...]}
        get_plan_limits('enterprise')['maxAnimals'] -> -1  (unlimited)
    """
    validate_plan(plan)
    config = SUBSCRIPTION_PLANS[plan]
    return {
        'plan': plan,
        'maxAnimals': config['maxAnimals'],
        'maxUsers': config['maxUsers'],
        'features': plan_features(plan),
    }


def limits_payload(plan: str, status: str) -> Dict[str, Any]:
    """Cached limits entry: plan limits plus the subscription status that gates them."""
    limits = get_plan_limits(plan)
    limits['status'] = status
    return limits


def next_status(current_status: str, event: str) -> str:
    """Target status for a billing event, or InvalidTransitionError."""
    if event not in BILLING_EVENTS:
        raise ValidationError(f"Unknown billing event '{event}'", payload={'field': 'event'})
    target = SUBSCRIPTION_TRANSITIONS.get(current_status, {}).get(event)
    if target is None:
        raise InvalidTransitionError(
            current_status, event,
            message=f"Subscription in status '{current_status}' cannot accept '{event}'"
        )
    return target


def initial_subscription_values(tenant_id: str, plan: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Column values for a freshly provisioned subscription (trial window + renewal date)."""
    now = now or utcnow()
    return {
        'tenant_id': tenant_id,
        'plan': plan,
        'status': 'trial',
        'gateway': 'bank_transfer',
        'renew_date': now + timedelta(days=renewal_period_days()),
        'trial_ends_at': now + timedelta(days=trial_days()),
        'amount': plan_price(plan),
        'currency': 'PKR',
    }


# ----------------------------------------------------------------------
# Cached reads
# ----------------------------------------------------------------------

def get_tenant_subscription(tenant_id: str) -> Optional[Dict[str, Any]]:
    """Subscription payload for a tenant, through the cache. None if absent."""
    store = get_store()
    cache = get_cache()

    def load():
        tenant = store.get_tenant(tenant_id)
        if tenant is None:
            return None
        subscription = store.get_subscription(tenant_id)
        return subscription.to_dict() if subscription else None

    return cache.get_or_load(cache.tenant_key(tenant_id, 'subscription'), load)


def get_tenant_limits(tenant_id: str) -> Dict[str, Any]:
    """
    Plan limits for a tenant, through the cache.

    Raises NotFoundError if the tenant or its subscription does not exist.
    """
    store = get_store()
    cache = get_cache()

    def load():
        tenant = store.get_tenant(tenant_id)
        if tenant is None:
            return None
        subscription = store.get_subscription(tenant_id)
        if subscription is None:
            return None
        return limits_payload(subscription.plan, subscription.status)

    limits = cache.get_or_load(
        cache.tenant_key(tenant_id, 'limits'), load,
        ttl=_config('CACHE_LIMITS_TTL', 3600)
    )
    if limits is None:
        raise NotFoundError(f"Subscription not found for tenant {tenant_id}")
    return limits


def _is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def can_add_animal(tenant_id: str, current_count: int) -> bool:
    """Whether the tenant's plan allows one more animal."""
    limit = get_tenant_limits(tenant_id)['maxAnimals']
    return _is_unlimited(limit) or current_count < limit


def can_add_user(tenant_id: str, current_count: int) -> bool:
    """Whether the tenant's plan allows one more user."""
    limit = get_tenant_limits(tenant_id)['maxUsers']
    return _is_unlimited(limit) or current_count < limit


def remaining_animal_slots(tenant_id: str, current_count: int) -> int:
    """Animals that can still be added; -1 when unlimited."""
    limit = get_tenant_limits(tenant_id)['maxAnimals']
    if _is_unlimited(limit):
        return UNLIMITED
    return max(0, limit - current_count)


def remaining_user_slots(tenant_id: str, current_count: int) -> int:
    """Users that can still be added; -1 when unlimited."""
    limit = get_tenant_limits(tenant_id)['maxUsers']
    if _is_unlimited(limit):
        return UNLIMITED
    return max(0, limit - current_count)


def has_feature(tenant_id: str, feature: str) -> bool:
    """Whether the tenant's plan includes a feature."""
    return feature in get_tenant_limits(tenant_id)['features']


# ----------------------------------------------------------------------
# Mutations
# ----------------------------------------------------------------------

def _load_for_update(session, store, tenant_id: str):
    subscription = store.get_subscription_for_update(session, tenant_id)
    if subscription is None or subscription.tenant.is_deleted:
        raise NotFoundError(f"Subscription not found for tenant {tenant_id}")
    return subscription


def apply_billing_event(
    tenant_id: str,
    event: str,
    now: Optional[datetime] = None,
    gateway: Optional[str] = None,
    token: Optional[str] = None
) -> Dict[str, Any]:
    """
    Apply a billing event to a tenant's subscription.

    Args:
        tenant_id: Tenant whose subscription changes
        event: One of BILLING_EVENTS
        now: Event time (defaults to current UTC time)
        gateway: Gateway that reported the event, recorded on renewal success
        token: Recurring billing token, recorded on renewal success

    Returns:
        dict: Updated subscription payload

    Raises:
        InvalidTransitionError: Event not allowed from the current status
            (the row is left unchanged)
    """
    if gateway is not None and gateway not in PAYMENT_GATEWAYS:
        raise ValidationError(f"Unknown payment gateway '{gateway}'", payload={'field': 'gateway'})
    now = now or utcnow()
    store = get_store()

    with store.transaction() as session:
        subscription = _load_for_update(session, store, tenant_id)
        previous_status = subscription.status
        target = next_status(previous_status, event)

        if event == TRIAL_ELAPSED and (subscription.trial_ends_at is None or subscription.trial_ends_at > now):
            raise InvalidTransitionError(
                previous_status, target,
                message=f"Trial for tenant {tenant_id} has not elapsed yet"
            )

        subscription.status = target
        if event == RENEWAL_SUCCEEDED:
            base = max(subscription.renew_date, now) if subscription.renew_date else now
            subscription.renew_date = base + timedelta(days=renewal_period_days())
            subscription.trial_ends_at = None
            if gateway:
                subscription.gateway = gateway
            if token:
                subscription.token = token
        subscription.updated_at = now
        session.flush()
        result = subscription.to_dict()

    get_cache().invalidate_tenant(tenant_id)

    logger.info(f"[SUBSCRIPTION] {tenant_id}: {previous_status} -> {target} ({event})")
    log_action(
        AuditAction.SUBSCRIPTION_STATUS_CHANGED, 'subscription',
        resource_id=tenant_id, tenant_id=tenant_id,
        details={'event': event, 'from': previous_status, 'to': target}
    )
    return result


def change_plan(tenant_id: str, plan: str) -> Dict[str, Any]:
    """
    Move a tenant to another plan tier. Amount follows the catalogue price.

    Cancelled subscriptions cannot change plan.
    """
    validate_plan(plan)
    store = get_store()

    with store.transaction() as session:
        subscription = _load_for_update(session, store, tenant_id)
        if subscription.is_cancelled:
            raise InvalidTransitionError(
                subscription.status, plan,
                message="Cannot change the plan of a cancelled subscription"
            )
        previous_plan = subscription.plan
        subscription.plan = plan
        subscription.amount = plan_price(plan)
        subscription.updated_at = utcnow()
        session.flush()
        result = subscription.to_dict()

    get_cache().invalidate_tenant(tenant_id)

    logger.info(f"[SUBSCRIPTION] {tenant_id}: plan {previous_plan} -> {plan} ({rupees(result['amount'])})")
    log_action(
        AuditAction.SUBSCRIPTION_PLAN_CHANGED, 'subscription',
        resource_id=tenant_id, tenant_id=tenant_id,
        details={'from': previous_plan, 'to': plan}
    )
    return result


def expire_elapsed_trials(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Move every trial whose window has passed to `expired`.

    Each tenant is handled in its own transaction; one failure does not stop the sweep.

    Returns:
        dict: {'expired': [tenant ids], 'errors': [messages]}
    """
    now = now or utcnow()
    expired: List[str] = []
    errors: List[str] = []

    for subscription in get_store().list_elapsed_trials(now):
        tenant_id = subscription.tenant_id
        try:
            apply_billing_event(tenant_id, TRIAL_ELAPSED, now=now)
            expired.append(tenant_id)
        except (InvalidTransitionError, NotFoundError) as e:
            # Changed concurrently; nothing to expire
            logger.info(f"[SUBSCRIPTION] Skipping {tenant_id}: {e.message}")
        except Exception as e:
            logger.error(f"[SUBSCRIPTION] Failed to expire trial for {tenant_id}: {e}")
            errors.append(f"{tenant_id}: {e}")

    logger.info(f"[SUBSCRIPTION] Trial sweep: {len(expired)} expired, {len(errors)} errors")
    return {'expired': expired, 'errors': errors}
