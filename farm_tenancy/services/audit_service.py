"""
Audit logging service for tracking tenant lifecycle actions.

Writes are best-effort: each entry is persisted in its own session, after
(never inside) the caller's transaction, and any failure is logged and
dropped. Audit failures must never break business logic.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import g, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from farm_tenancy.blueprints.metrics import audit_write_failures_total
from farm_tenancy.database import new_session
from farm_tenancy.models.audit_log import AuditLog, AuditAction
from farm_tenancy.utils.formatters import utcnow

logger = logging.getLogger(__name__)

SYSTEM_USER = 'system'


@dataclass
class AuditEntry:
    """One audit record, built before it is handed to the writer."""
    user_id: str
    action: AuditAction
    resource: str
    resource_id: Optional[str] = None
    tenant_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


def build_entry(
    action: AuditAction,
    resource: str,
    resource_id: str = None,
    tenant_id: str = None,
    details: dict = None,
    user_id: str = None
) -> AuditEntry:
    """
    Build an audit entry, filling the actor and request metadata from Flask context.

    Args:
        action: AuditAction enum value
        resource: Type of resource affected (e.g., 'tenant', 'farm_application')
        resource_id: ID of the affected resource
        tenant_id: Tenant the action belongs to (None for platform-level events)
        details: Dict with additional details
        user_id: Actor; defaults to g.user_id, then 'system'
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = request.headers.get('User-Agent', '')[:255] or None
        if user_id is None:
            user_id = g.get('user_id')

    return AuditEntry(
        user_id=user_id or SYSTEM_USER,
        action=action,
        resource=resource,
        resource_id=resource_id,
        tenant_id=tenant_id,
        details=details or {},
        ip_address=ip_address,
        user_agent=user_agent,
    )


class AuditLogWriter:
    """
    Fire-and-forget audit writer.

    With `asynchronous=True` entries are written on a small thread pool so the
    request never waits on the audit insert; otherwise they are written inline.
    """

    def __init__(self, enabled: bool = True, asynchronous: bool = False, max_workers: int = 2,
                 session_factory=None):
        self.enabled = enabled
        self.asynchronous = asynchronous
        self._session_factory = session_factory or new_session
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix='audit') if asynchronous else None

    def record(self, entry: AuditEntry) -> None:
        """Queue or write one entry. Never raises."""
        if not self.enabled:
            return
        if self._executor is not None:
            try:
                self._executor.submit(self._write, entry)
                return
            except RuntimeError as e:
                # Executor already shut down; write inline instead
                logger.warning(f"[AUDIT] Executor unavailable ({e}), writing inline")
        self._write(entry)

    def _write(self, entry: AuditEntry) -> bool:
        session = None
        try:
            session = self._session_factory()
            session.add(AuditLog(
                tenant_id=entry.tenant_id,
                user_id=entry.user_id,
                action=entry.action,
                resource=entry.resource,
                resource_id=entry.resource_id,
                details=entry.details,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                created_at=entry.created_at,
            ))
            session.commit()
            logger.info(
                f"[AUDIT] {entry.action.value} by {entry.user_id} on {entry.resource} {entry.resource_id}"
            )
            return True
        except (SQLAlchemyError, RuntimeError, TypeError, ValueError) as e:
            audit_write_failures_total.inc()
            logger.error(f"[AUDIT] Failed to write audit log {entry.action.value}: {e}")
            if session is not None:
                try:
                    session.rollback()
                except SQLAlchemyError:
                    pass
            return False
        finally:
            if session is not None:
                session.close()

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


def log_action(
    action: AuditAction,
    resource: str,
    resource_id: str = None,
    tenant_id: str = None,
    details: dict = None,
    user_id: str = None
) -> None:
    """Build and record an audit entry in one call."""
    writer = _audit_writer
    if writer is None:
        logger.warning(f"[AUDIT] Writer not initialized, dropping {action.value}")
        return
    writer.record(build_entry(action, resource, resource_id=resource_id, tenant_id=tenant_id,
                              details=details, user_id=user_id))


def get_audit_logs(
    session,
    tenant_id: str,
    limit: int = 100,
    offset: int = 0,
    action_filter: AuditAction = None,
    user_id_filter: str = None,
    resource_filter: str = None
) -> List[AuditLog]:
    """
    Retrieve audit logs for a tenant with optional filters, newest first.

    Args:
        session: Database session
        tenant_id: Tenant ID
        limit: Max number of results
        offset: Pagination offset
        action_filter: Filter by specific action
        user_id_filter: Filter by user
        resource_filter: Filter by resource type
    """
    query = session.query(AuditLog).filter(
        AuditLog.tenant_id == tenant_id
    )

    if action_filter:
        query = query.filter(AuditLog.action == action_filter)

    if user_id_filter:
        query = query.filter(AuditLog.user_id == user_id_filter)

    if resource_filter:
        query = query.filter(AuditLog.resource == resource_filter)

    query = query.order_by(AuditLog.created_at.desc())
    query = query.limit(limit).offset(offset)

    return query.all()


_audit_writer: Optional[AuditLogWriter] = None


def init_audit(app) -> AuditLogWriter:
    """Initialize the audit writer singleton from app config."""
    global _audit_writer
    if _audit_writer is not None:
        _audit_writer.shutdown(wait=False)
    _audit_writer = AuditLogWriter(
        enabled=app.config.get('AUDIT_ENABLED', True),
        asynchronous=app.config.get('AUDIT_ASYNC', True),
        max_workers=app.config.get('AUDIT_MAX_WORKERS', 2),
    )
    app.extensions['audit'] = _audit_writer
    return _audit_writer


def get_audit_writer() -> AuditLogWriter:
    """Get audit writer instance."""
    if _audit_writer is None:
        raise RuntimeError("Audit writer not initialized.")
    return _audit_writer
