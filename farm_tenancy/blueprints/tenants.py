"""
Tenant blueprint: config, subscription and limits for the caller's active tenant.

Reads are served through the cache; writes invalidate it before responding.
"""
import logging
from flask import Blueprint, request, jsonify, g

from farm_tenancy.decorators.permissions import require_org_admin, require_tenant
from farm_tenancy.exceptions import NotFoundError, ValidationError
from farm_tenancy.services import subscription_service, tenant_service

logger = logging.getLogger(__name__)

tenants_bp = Blueprint('tenants', __name__, url_prefix='/api/tenant')


@tenants_bp.route('/config', methods=['GET'])
@require_tenant
def config_detail():
    return jsonify({'status': 'success', 'data': tenant_service.get_tenant_config(g.tenant_id)})


@tenants_bp.route('/config', methods=['PATCH'])
@require_org_admin
def config_update():
    """Update branding/locale. Body uses config keys, e.g. {"primaryColor": "#0F5132"}."""
    data = request.get_json(silent=True) or {}
    config = tenant_service.update_tenant_branding(g.tenant_id, data)
    return jsonify({'status': 'success', 'data': config})


@tenants_bp.route('/subscription', methods=['GET'])
@require_tenant
def subscription_detail():
    subscription = subscription_service.get_tenant_subscription(g.tenant_id)
    if subscription is None:
        raise NotFoundError('Subscription not found')
    return jsonify({'status': 'success', 'data': subscription})


@tenants_bp.route('/limits', methods=['GET'])
@require_tenant
def limits_detail():
    """
    Plan limits, with remaining slots when current counts are passed.

    Query: ?animals=<current count>&users=<current count>
    """
    limits = dict(subscription_service.get_tenant_limits(g.tenant_id))
    animals = request.args.get('animals', type=int)
    users = request.args.get('users', type=int)
    if animals is not None:
        limits['remainingAnimals'] = subscription_service.remaining_animal_slots(g.tenant_id, animals)
        limits['canAddAnimal'] = subscription_service.can_add_animal(g.tenant_id, animals)
    if users is not None:
        limits['remainingUsers'] = subscription_service.remaining_user_slots(g.tenant_id, users)
        limits['canAddUser'] = subscription_service.can_add_user(g.tenant_id, users)
    return jsonify({'status': 'success', 'data': limits})


@tenants_bp.route('/custom-fields', methods=['GET'])
@require_tenant
def custom_fields_detail():
    return jsonify({'status': 'success', 'data': {'fields': tenant_service.get_custom_fields(g.tenant_id)}})


@tenants_bp.route('/custom-fields', methods=['PUT'])
@require_org_admin
def custom_fields_update():
    """Replace the custom-fields schema. Body: {"fields": [...]}."""
    data = request.get_json(silent=True) or {}
    if 'fields' not in data:
        raise ValidationError("fields is required", payload={'field': 'fields'})
    fields = tenant_service.update_custom_fields(g.tenant_id, data['fields'])
    return jsonify({'status': 'success', 'data': {'fields': fields}})


@tenants_bp.route('', methods=['DELETE'])
@require_org_admin
def tenant_delete():
    """Soft-delete the active tenant."""
    tenant = tenant_service.soft_delete_tenant(g.tenant_id)
    logger.info(f"Tenant {g.tenant_id} deleted by {g.user_id}")
    return jsonify({'status': 'success', 'data': tenant})
