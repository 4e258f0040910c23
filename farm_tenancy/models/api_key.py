"""API keys issued to tenants for machine access (hash only, never the key)."""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship, backref
from farm_tenancy.database import Base
from farm_tenancy.models.types import JSONType
from farm_tenancy.utils.formatters import utcnow


class ApiKey(Base):
    """Hashed API key keyed by its source document id."""
    __tablename__ = 'api_keys'

    id = Column(String(255), primary_key=True)
    tenant_id = Column(String(255), ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    key_hash = Column(Text, nullable=False)
    key_prefix = Column(String(20), nullable=False)  # First chars for identification
    permissions = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    created_by = Column(String(255), nullable=False)

    tenant = relationship('Tenant', backref=backref('api_keys', passive_deletes=True))

    __table_args__ = (
        Index('api_keys_tenant_id_idx', 'tenant_id'),
        Index('api_keys_key_prefix_idx', 'key_prefix'),
    )

    def __repr__(self):
        return f'<ApiKey id={self.id} tenant_id={self.tenant_id} prefix={self.key_prefix}>'
