"""
Audit Log model for tracking tenant lifecycle actions.
"""
import enum
import uuid
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index, Enum as SQLEnum
from farm_tenancy.database import Base
from farm_tenancy.models.types import JSONType
from farm_tenancy.utils.formatters import utcnow, isoformat


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Generic CRUD
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    READ = "read"
    LOGIN = "login"
    LOGOUT = "logout"

    # Onboarding
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_STATUS_CHANGED = "application_status_changed"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"

    # Tenant lifecycle
    TENANT_PROVISIONED = "tenant_provisioned"
    TENANT_UPDATED = "tenant_updated"
    TENANT_DELETED = "tenant_deleted"
    CUSTOM_FIELDS_UPDATED = "custom_fields_updated"

    # Billing
    SUBSCRIPTION_STATUS_CHANGED = "subscription_status_changed"
    SUBSCRIPTION_PLAN_CHANGED = "subscription_plan_changed"

    # Operations
    MIGRATION_RUN = "migration_run"


class AuditLog(Base):
    """
    Append-only audit log.
    tenant_id is null for platform-level events.
    """
    __tablename__ = 'audit_logs'

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    tenant_id = Column(String(255), ForeignKey('tenants.id', ondelete='SET NULL'), nullable=True)
    user_id = Column(String(255), nullable=False)
    action = Column(SQLEnum(AuditAction, name='audit_action'), nullable=False)
    resource = Column(String(100), nullable=False)  # e.g., 'tenant', 'farm_application'
    resource_id = Column(String(255), nullable=True)
    details = Column(JSONType, nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv4 or IPv6
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('audit_logs_tenant_id_idx', 'tenant_id'),
        Index('audit_logs_user_id_idx', 'user_id'),
        Index('audit_logs_created_at_idx', 'created_at'),
        Index('audit_logs_tenant_resource_idx', 'tenant_id', 'resource'),
    )

    def __repr__(self):
        return f"<AuditLog {self.action.value} by user {self.user_id} at {self.created_at}>"

    def to_dict(self):
        return {
            'id': self.id,
            'tenantId': self.tenant_id,
            'userId': self.user_id,
            'action': self.action.value,
            'resource': self.resource,
            'resourceId': self.resource_id,
            'details': self.details or {},
            'ipAddress': self.ip_address,
            'userAgent': self.user_agent,
            'createdAt': isoformat(self.created_at),
        }
