"""
Subscription model for tenant billing state.
"""
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship, backref
from farm_tenancy.database import Base
from farm_tenancy.utils.formatters import utcnow, isoformat


PLAN_TIERS = ('free', 'professional', 'farm', 'enterprise')
SUBSCRIPTION_STATUSES = ('trial', 'active', 'expired', 'cancelled', 'past_due', 'pending_approval')
PAYMENT_GATEWAYS = ('jazzcash', 'easypaisa', 'xpay', 'bank_transfer')


def subscription_id_for(tenant_id):
    """Stable subscription id derived from the tenant id."""
    return f"{tenant_id}_subscription"


class Subscription(Base):
    """
    Tenant subscription plan and billing status.

    Relationship: One-to-One with Tenant (unique tenant_id)
    """
    __tablename__ = 'subscriptions'

    id = Column(String(255), primary_key=True)
    tenant_id = Column(String(255), ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, unique=True)

    # Plan and Status
    plan = Column(String(20), nullable=False, default='free')
    status = Column(String(20), nullable=False, default='trial')
    gateway = Column(String(20), nullable=False, default='bank_transfer')

    # Dates
    renew_date = Column(DateTime, nullable=False)
    trial_ends_at = Column(DateTime, nullable=True)

    # Pricing - amount in smallest currency unit (paisa for PKR)
    amount = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default='PKR')

    token = Column(Text, nullable=True)  # Payment token for recurring billing

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Use backref to avoid circular import in Tenant model
    tenant = relationship('Tenant', backref=backref('subscription', uselist=False, passive_deletes=True))

    # Table constraints
    __table_args__ = (
        CheckConstraint("plan IN ('free', 'professional', 'farm', 'enterprise')", name='check_subscription_plan'),
        CheckConstraint(
            "status IN ('trial', 'active', 'expired', 'cancelled', 'past_due', 'pending_approval')",
            name='check_subscription_status'
        ),
        CheckConstraint(
            "gateway IN ('jazzcash', 'easypaisa', 'xpay', 'bank_transfer')",
            name='check_subscription_gateway'
        ),
        Index('subscriptions_status_idx', 'status'),
        Index('subscriptions_renew_date_idx', 'renew_date'),
    )

    def __repr__(self):
        return f'<Subscription tenant_id={self.tenant_id} plan={self.plan} status={self.status}>'

    @property
    def is_trial(self):
        """Check if subscription is in trial period."""
        return self.status == 'trial'

    @property
    def is_active(self):
        """Check if subscription grants access (trial or paid)."""
        return self.status in ('trial', 'active')

    @property
    def is_cancelled(self):
        """Check if subscription is cancelled."""
        return self.status == 'cancelled'

    def to_dict(self):
        return {
            'tenantId': self.tenant_id,
            'plan': self.plan,
            'status': self.status,
            'gateway': self.gateway,
            'renewDate': isoformat(self.renew_date),
            'trialEndsAt': isoformat(self.trial_ends_at),
            'amount': self.amount,
            'currency': self.currency,
            'isActive': self.is_active,
        }
