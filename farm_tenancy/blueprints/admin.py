"""
Admin blueprint: platform super-admin operations.

Application review, subscription administration, legacy migration and
audit log reads. Every route requires the super_admin platform role.
"""
import logging
from flask import Blueprint, request, jsonify, g, current_app

from farm_tenancy.database import get_session
from farm_tenancy.decorators.permissions import require_super_admin
from farm_tenancy.exceptions import NotFoundError, ValidationError
from farm_tenancy.models.audit_log import AuditAction
from farm_tenancy.services import application_service, subscription_service
from farm_tenancy.services.audit_service import get_audit_logs
from farm_tenancy.services.migration_service import JsonLegacyStore, migrate
from farm_tenancy.services.store_service import get_store

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


# ----------------------------------------------------------------------
# Applications
# ----------------------------------------------------------------------

@admin_bp.route('/applications')
@require_super_admin
def applications_list():
    """List applications, optionally filtered by status or applicant."""
    applications = application_service.list_applications(
        applicant_id=request.args.get('applicant_id'),
        status=request.args.get('status'),
        limit=request.args.get('limit', 100, type=int),
        offset=request.args.get('offset', 0, type=int),
    )
    return jsonify({'status': 'success', 'data': applications})


@admin_bp.route('/applications/<application_id>/start-review', methods=['POST'])
@require_super_admin
def application_start_review(application_id):
    application = application_service.start_review(application_id, g.user_id)
    return jsonify({'status': 'success', 'data': application})


@admin_bp.route('/applications/<application_id>/review', methods=['POST'])
@require_super_admin
def application_review(application_id):
    """
    Approve or reject an application.

    Body: {"action": "approve"|"reject", "reviewNotes": "...",
           "rejectionReason": "...", "tenantId": "org_..."}
    """
    data = request.get_json(silent=True) or {}
    action = data.get('action')

    if action == 'approve':
        result = application_service.approve_application(
            application_id,
            g.user_id,
            review_notes=data.get('reviewNotes'),
            tenant_id=data.get('tenantId'),
            slug_basis=data.get('slug'),
        )
        return jsonify({
            'status': 'success',
            'data': result,
            'message': f"Application approved. Farm ID: {result['tenant']['farmId']}",
        })

    if action == 'reject':
        application = application_service.reject_application(
            application_id,
            g.user_id,
            data.get('rejectionReason'),
            review_notes=data.get('reviewNotes'),
        )
        return jsonify({'status': 'success', 'data': application, 'message': 'Application rejected'})

    raise ValidationError("action must be 'approve' or 'reject'", payload={'field': 'action'})


@admin_bp.route('/applications/<application_id>/notes', methods=['PATCH'])
@require_super_admin
def application_notes(application_id):
    data = request.get_json(silent=True) or {}
    application = application_service.update_review_notes(application_id, g.user_id, data.get('reviewNotes'))
    return jsonify({'status': 'success', 'data': application})


# ----------------------------------------------------------------------
# Tenants
# ----------------------------------------------------------------------

@admin_bp.route('/tenants/<tenant_id>/subscription/events', methods=['POST'])
@require_super_admin
def subscription_event(tenant_id):
    """
    Apply a billing event reported by a payment gateway or an operator.

    Body: {"event": "renewal_succeeded", "gateway": "jazzcash", "token": "..."}
    """
    data = request.get_json(silent=True) or {}
    subscription = subscription_service.apply_billing_event(
        tenant_id,
        data.get('event'),
        gateway=data.get('gateway'),
        token=data.get('token'),
    )
    return jsonify({'status': 'success', 'data': subscription})


@admin_bp.route('/tenants/<tenant_id>/subscription/plan', methods=['POST'])
@require_super_admin
def subscription_plan(tenant_id):
    data = request.get_json(silent=True) or {}
    subscription = subscription_service.change_plan(tenant_id, data.get('plan'))
    return jsonify({'status': 'success', 'data': subscription})


@admin_bp.route('/tenants/<tenant_id>/audit-logs')
@require_super_admin
def tenant_audit_logs(tenant_id):
    """Audit trail for a tenant, newest first."""
    if get_store().get_tenant(tenant_id, include_deleted=True) is None:
        raise NotFoundError(f"Tenant {tenant_id} not found")

    action = request.args.get('action')
    try:
        action_filter = AuditAction(action) if action else None
    except ValueError:
        raise ValidationError(f"Unknown audit action '{action}'", payload={'field': 'action'})

    logs = get_audit_logs(
        get_session(),
        tenant_id,
        limit=min(request.args.get('limit', 100, type=int), 500),
        offset=request.args.get('offset', 0, type=int),
        action_filter=action_filter,
        user_id_filter=request.args.get('user_id'),
        resource_filter=request.args.get('resource'),
    )
    return jsonify({'status': 'success', 'data': [log.to_dict() for log in logs]})


# ----------------------------------------------------------------------
# Migration
# ----------------------------------------------------------------------

@admin_bp.route('/migrations', methods=['POST'])
@require_super_admin
def run_migration():
    """
    Run the legacy-store migration.

    Body: {"dryRun": true, "tenantId": "org_..."} plus either "export" (the
    legacy export document inline) or nothing, to use LEGACY_EXPORT_PATH.
    """
    data = request.get_json(silent=True) or {}
    dry_run = bool(data.get('dryRun', False))

    if data.get('export') is not None:
        source = JsonLegacyStore(data['export'])
    else:
        path = current_app.config.get('LEGACY_EXPORT_PATH')
        if not path:
            raise ValidationError("No legacy export supplied and LEGACY_EXPORT_PATH is not set")
        try:
            source = JsonLegacyStore.from_path(path)
        except (OSError, ValueError) as e:
            raise ValidationError(f"Could not read legacy export: {e}")

    summary = migrate(source, dry_run=dry_run, tenant_id=data.get('tenantId'))
    return jsonify({'status': 'success', 'data': summary.to_dict()})
