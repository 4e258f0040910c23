"""Custom fields configuration - tenant-defined schema for animal records."""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship, backref
from farm_tenancy.database import Base
from farm_tenancy.models.types import JSONType
from farm_tenancy.utils.formatters import utcnow, isoformat


def custom_fields_id_for(tenant_id):
    """Stable config id derived from the tenant id."""
    return f"{tenant_id}_custom_fields"


class CustomFieldsConfig(Base):
    """One per tenant. `fields` is the ordered list of validated field definitions."""
    __tablename__ = 'custom_fields_config'

    id = Column(String(255), primary_key=True)
    tenant_id = Column(String(255), ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, unique=True)
    fields = Column(JSONType, nullable=False, default=list)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    tenant = relationship('Tenant', backref=backref('custom_fields_config', uselist=False, passive_deletes=True))

    def __repr__(self):
        return f'<CustomFieldsConfig tenant_id={self.tenant_id} fields={len(self.fields or [])}>'

    def to_dict(self):
        return {
            'tenantId': self.tenant_id,
            'fields': list(self.fields or []),
            'updatedAt': isoformat(self.updated_at),
        }
