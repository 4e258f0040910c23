"""
Payment records. Only the payment status is recorded here; gateway
processing happens outside this system.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship, backref
from farm_tenancy.database import Base
from farm_tenancy.models.types import JSONType
from farm_tenancy.utils.formatters import utcnow, isoformat


PAYMENT_STATUSES = ('pending', 'completed', 'failed', 'refunded')


class Payment(Base):
    """Payment status record keyed by its source document id."""
    __tablename__ = 'payments'

    id = Column(String(255), primary_key=True)
    tenant_id = Column(String(255), ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)

    amount = Column(Integer, nullable=False)  # paisa
    currency = Column(String(3), nullable=False, default='PKR')
    gateway = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default='pending')
    transaction_id = Column(String(255), nullable=True)
    plan = Column(String(20), nullable=False)
    metadata_json = Column('metadata', JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    tenant = relationship('Tenant', backref=backref('payments', passive_deletes=True))

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'completed', 'failed', 'refunded')", name='check_payment_status'),
        Index('payments_tenant_id_idx', 'tenant_id'),
        Index('payments_transaction_id_idx', 'transaction_id'),
    )

    def __repr__(self):
        return f'<Payment id={self.id} tenant_id={self.tenant_id} amount={self.amount} status={self.status}>'

    def to_dict(self):
        return {
            'id': self.id,
            'tenantId': self.tenant_id,
            'amount': self.amount,
            'currency': self.currency,
            'gateway': self.gateway,
            'status': self.status,
            'transactionId': self.transaction_id,
            'plan': self.plan,
            'createdAt': isoformat(self.created_at),
        }
