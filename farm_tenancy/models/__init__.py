"""Models package - exports all SQLAlchemy models."""
# Tenant core
from farm_tenancy.models.tenant import Tenant
from farm_tenancy.models.subscription import Subscription, PLAN_TIERS, SUBSCRIPTION_STATUSES, PAYMENT_GATEWAYS
from farm_tenancy.models.custom_fields_config import CustomFieldsConfig

# Onboarding
from farm_tenancy.models.farm_application import FarmApplication, APPLICATION_STATUSES
from farm_tenancy.models.farm_id_sequence import FarmIdSequence

# Audit and billing records
from farm_tenancy.models.audit_log import AuditLog, AuditAction
from farm_tenancy.models.payment import Payment
from farm_tenancy.models.api_key import ApiKey

__all__ = [
    'Tenant', 'Subscription', 'CustomFieldsConfig',
    'PLAN_TIERS', 'SUBSCRIPTION_STATUSES', 'PAYMENT_GATEWAYS',
    'FarmApplication', 'APPLICATION_STATUSES', 'FarmIdSequence',
    'AuditLog', 'AuditAction', 'Payment', 'ApiKey',
]
