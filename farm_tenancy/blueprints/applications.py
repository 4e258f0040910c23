"""
Farm Applications blueprint (applicant side).

POST /api/applications                       submit
GET  /api/applications                       list caller's applications
GET  /api/applications/<id>                  one of caller's applications
POST /api/applications/<id>/payment-slip     attach payment slip
"""
import logging
from flask import Blueprint, request, jsonify, g

from farm_tenancy.decorators.permissions import require_identity
from farm_tenancy.services import application_service

logger = logging.getLogger(__name__)

applications_bp = Blueprint('applications', __name__, url_prefix='/api/applications')


@applications_bp.route('', methods=['POST'])
@require_identity
def submit():
    """Submit a new farm application."""
    data = request.get_json(silent=True) or {}
    application = application_service.submit_application(g.user_id, data)

    if application['status'] == 'pending' and application['requestedPlan'] != 'free':
        message = 'Application submitted. Please upload payment slip to complete.'
    else:
        message = 'Application submitted successfully!'

    return jsonify({'status': 'success', 'data': application, 'message': message}), 201


@applications_bp.route('', methods=['GET'])
@require_identity
def list_mine():
    """List the caller's applications, newest first."""
    applications = application_service.list_applications(
        applicant_id=g.user_id,
        status=request.args.get('status'),
        limit=request.args.get('limit', 50, type=int),
        offset=request.args.get('offset', 0, type=int),
    )
    return jsonify({'status': 'success', 'data': applications})


@applications_bp.route('/<application_id>', methods=['GET'])
@require_identity
def detail(application_id):
    application = application_service.get_application(application_id, applicant_id=g.user_id)
    return jsonify({'status': 'success', 'data': application})


@applications_bp.route('/<application_id>/payment-slip', methods=['POST'])
@require_identity
def payment_slip(application_id):
    """
    Attach a payment slip uploaded to object storage.

    Body: {"paymentSlipUrl": "...", "paymentSlipProvider": "cloudinary",
           "paymentAmount": 499900, "paymentDate": "2024-03-01", "paymentReference": "..."}
    """
    data = request.get_json(silent=True) or {}
    application = application_service.upload_payment_slip(
        application_id,
        g.user_id,
        data.get('paymentSlipUrl'),
        provider=data.get('paymentSlipProvider'),
        amount=data.get('paymentAmount'),
        payment_date=data.get('paymentDate'),
        reference=data.get('paymentReference'),
    )
    return jsonify({'status': 'success', 'data': application})
