"""
Farm Application workflow.

Allowed status changes:

    pending -> payment_uploaded -> under_review -> approved
    pending -> under_review                        (free plan only)
    any non-terminal status -> rejected

`approved` and `rejected` are terminal. Each change locks the row, checks
the transition and writes inside one store transaction; a refused change
raises InvalidTransitionError and leaves the row untouched. Approval
provisions the tenant inside the same transaction as the status change, so
an application is never left approved without its tenant.
"""
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context

from farm_tenancy.blueprints.metrics import application_transitions_total
from farm_tenancy.exceptions import (
    InvalidTransitionError, NotFoundError, UnauthorizedError, ValidationError
)
from farm_tenancy.models import FarmApplication, APPLICATION_STATUSES
from farm_tenancy.models.audit_log import AuditAction
from farm_tenancy.models.farm_application import PAYMENT_SLIP_PROVIDERS
from farm_tenancy.services.audit_service import SYSTEM_USER, log_action
from farm_tenancy.services.provisioning_service import (
    ProvisioningRequest, finalize_provisioning, provision_tenant
)
from farm_tenancy.services.store_service import get_store
from farm_tenancy.services.subscription_service import validate_plan
from farm_tenancy.utils.formatters import is_valid_email, parse_datetime, utcnow

logger = logging.getLogger(__name__)

PENDING = 'pending'
PAYMENT_UPLOADED = 'payment_uploaded'
UNDER_REVIEW = 'under_review'
APPROVED = 'approved'
REJECTED = 'rejected'

APPLICATION_TRANSITIONS = {
    PENDING: (PAYMENT_UPLOADED, UNDER_REVIEW, REJECTED),
    PAYMENT_UPLOADED: (UNDER_REVIEW, REJECTED),
    UNDER_REVIEW: (APPROVED, REJECTED),
    APPROVED: (),
    REJECTED: (),
}

_BASE36 = '0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ'


def generate_application_id() -> str:
    """APP-<base36 millisecond timestamp>-<random suffix>."""
    millis = int(time.time() * 1000)
    encoded = ''
    while millis:
        millis, remainder = divmod(millis, 36)
        encoded = _BASE36[remainder] + encoded
    return f"APP-{encoded}-{uuid.uuid4().hex[:4].upper()}"


def check_transition(application: FarmApplication, target: str) -> None:
    """
    Raise InvalidTransitionError unless `application` may move to `target`.

    Examples:
        free plan, pending -> under_review: allowed
        free plan, pending -> payment_uploaded: refused
        paid plan, pending -> under_review: refused (payment slip first)
    """
    current = application.status
    if application.is_terminal:
        raise InvalidTransitionError(current, target, message="Application has already been processed")
    if target not in APPLICATION_TRANSITIONS.get(current, ()):
        raise InvalidTransitionError(current, target)
    if target == PAYMENT_UPLOADED and not application.is_paid_plan:
        raise InvalidTransitionError(
            current, target, message="Free-plan applications do not take a payment slip"
        )
    if current == PENDING and target == UNDER_REVIEW and application.is_paid_plan:
        raise InvalidTransitionError(
            current, target, message="A payment slip is required before review for paid plans"
        )


def _auto_approve_enabled() -> bool:
    return has_app_context() and current_app.config.get('FREE_PLAN_AUTO_APPROVE', False)


def _lock(session, store, application_id: str) -> FarmApplication:
    application = store.get_application_for_update(session, application_id)
    if application is None:
        raise NotFoundError(f"Application {application_id} not found")
    return application


def _record_transition(application: Dict[str, Any], previous: str, actor_id: Optional[str],
                       action: AuditAction = AuditAction.APPLICATION_STATUS_CHANGED,
                       details: Optional[Dict[str, Any]] = None) -> None:
    target = application['status']
    application_transitions_total.labels(status=target).inc()
    logger.info(f"[APPLICATION] {application['id']}: {previous} -> {target}")
    audit_details = {'from': previous, 'to': target}
    audit_details.update(details or {})
    log_action(action, 'farm_application', resource_id=application['id'],
               tenant_id=application.get('assignedTenantId'), details=audit_details, user_id=actor_id)


# ----------------------------------------------------------------------
# Submission
# ----------------------------------------------------------------------

def _require_text(data: Dict[str, Any], key: str, min_length: int, max_length: int) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not (min_length <= len(value.strip()) <= max_length):
        raise ValidationError(
            f"{key} must be between {min_length} and {max_length} characters", payload={'field': key}
        )
    return value.strip()


def _optional_text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or value == '':
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be text", payload={'field': key})
    return value.strip()


def validate_submission(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a submission body (camelCase keys) and map it to column values.

    A plan must be chosen before submitting; a null requestedPlan is refused.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")

    requested_plan = data.get('requestedPlan')
    if requested_plan is None:
        raise ValidationError("Choose a plan before submitting the application",
                              payload={'field': 'requestedPlan'})
    validate_plan(requested_plan)

    email = data.get('email')
    if not isinstance(email, str) or not is_valid_email(email.strip()):
        raise ValidationError("A valid email is required", payload={'field': 'email'})

    animal_types = data.get('animalTypes') or []
    if not isinstance(animal_types, list) or not all(isinstance(t, str) and t.strip() for t in animal_types):
        raise ValidationError("animalTypes must be a list of names", payload={'field': 'animalTypes'})

    estimated_animals = data.get('estimatedAnimals') or 0
    if isinstance(estimated_animals, bool) or not isinstance(estimated_animals, int) or estimated_animals < 0:
        raise ValidationError("estimatedAnimals must be a positive whole number",
                              payload={'field': 'estimatedAnimals'})

    return {
        'farm_name': _require_text(data, 'farmName', 2, 255),
        'owner_name': _require_text(data, 'ownerName', 2, 255),
        'email': email.strip().lower(),
        'phone': _require_text(data, 'phone', 10, 20),
        'address': _optional_text(data, 'address'),
        'city': _optional_text(data, 'city'),
        'province': _optional_text(data, 'province'),
        'animal_types': [t.strip().lower() for t in animal_types],
        'estimated_animals': estimated_animals,
        'requested_plan': requested_plan,
    }


def _payment_fields(slip_url: Any, provider: Any = None, amount: Any = None,
                    payment_date: Any = None, reference: Any = None) -> Dict[str, Any]:
    if not isinstance(slip_url, str) or not slip_url.strip():
        raise ValidationError("paymentSlipUrl is required", payload={'field': 'paymentSlipUrl'})
    if provider is not None and provider not in PAYMENT_SLIP_PROVIDERS:
        raise ValidationError(
            f"paymentSlipProvider must be one of: {', '.join(PAYMENT_SLIP_PROVIDERS)}",
            payload={'field': 'paymentSlipProvider'}
        )
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int) or amount < 0):
        raise ValidationError("paymentAmount must be a whole number of paisa", payload={'field': 'paymentAmount'})
    try:
        parsed_date = parse_datetime(payment_date)
    except ValueError:
        raise ValidationError("paymentDate is not a valid date", payload={'field': 'paymentDate'})
    return {
        'payment_slip_url': slip_url.strip(),
        'payment_slip_provider': provider,
        'payment_amount': amount,
        'payment_date': parsed_date,
        'payment_reference': reference,
    }


def submit_application(applicant_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Persist a new application in `pending`.

    A paid-plan submission carrying `paymentSlipUrl` moves straight on to
    `payment_uploaded`. With FREE_PLAN_AUTO_APPROVE on, a free-plan
    submission is reviewed and approved by the system right away.
    """
    if not applicant_id:
        raise UnauthorizedError("Sign in to submit an application")
    values = validate_submission(data)
    slip_url = data.get('paymentSlipUrl')

    store = get_store()
    now = utcnow()
    application = FarmApplication(
        id=generate_application_id(),
        applicant_id=applicant_id,
        status=PENDING,
        created_at=now,
        updated_at=now,
        **values
    )

    with store.transaction() as session:
        store.add(session, application)
        if slip_url:
            check_transition(application, PAYMENT_UPLOADED)
            for attr, value in _payment_fields(
                slip_url, data.get('paymentSlipProvider'), data.get('paymentAmount'),
                data.get('paymentDate'), data.get('paymentReference')
            ).items():
                setattr(application, attr, value)
            application.status = PAYMENT_UPLOADED
            session.flush()
        result = application.to_dict()

    logger.info(f"[APPLICATION] Submitted {result['id']} by {applicant_id} for plan {result['requestedPlan']}")
    log_action(AuditAction.APPLICATION_SUBMITTED, 'farm_application', resource_id=result['id'],
               details={'plan': result['requestedPlan'], 'status': result['status']}, user_id=applicant_id)

    if result['requestedPlan'] == 'free' and _auto_approve_enabled():
        start_review(result['id'], SYSTEM_USER)
        result = approve_application(result['id'], SYSTEM_USER,
                                     review_notes='Automatically approved (free plan)')['application']
    return result


# ----------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------

def upload_payment_slip(
    application_id: str,
    applicant_id: Optional[str],
    slip_url: str,
    provider: Optional[str] = None,
    amount: Optional[int] = None,
    payment_date: Any = None,
    reference: Optional[str] = None
) -> Dict[str, Any]:
    """
    Attach the payment slip (URL from object storage) and move to `payment_uploaded`.

    Args:
        applicant_id: When given, must own the application
    """
    fields = _payment_fields(slip_url, provider, amount, payment_date, reference)
    store = get_store()

    with store.transaction() as session:
        application = _lock(session, store, application_id)
        if applicant_id is not None and application.applicant_id != applicant_id:
            raise UnauthorizedError("You can only upload a payment slip for your own application")
        previous = application.status
        check_transition(application, PAYMENT_UPLOADED)
        for attr, value in fields.items():
            setattr(application, attr, value)
        application.status = PAYMENT_UPLOADED
        application.updated_at = utcnow()
        session.flush()
        result = application.to_dict()

    _record_transition(result, previous, applicant_id)
    return result


def start_review(application_id: str, reviewer_id: str) -> Dict[str, Any]:
    """Move an application to `under_review`."""
    store = get_store()

    with store.transaction() as session:
        application = _lock(session, store, application_id)
        previous = application.status
        check_transition(application, UNDER_REVIEW)
        application.status = UNDER_REVIEW
        application.reviewed_by = reviewer_id
        application.updated_at = utcnow()
        session.flush()
        result = application.to_dict()

    _record_transition(result, previous, reviewer_id)
    return result


def approve_application(
    application_id: str,
    reviewer_id: str,
    review_notes: Optional[str] = None,
    tenant_id: Optional[str] = None,
    slug_basis: Optional[str] = None
) -> Dict[str, Any]:
    """
    Approve and provision in one transaction.

    Args:
        tenant_id: Identity-provider organisation id for the new tenant (generated if omitted)
        slug_basis: Text to derive the slug from (defaults to the farm name)

    Returns:
        dict: {'application': ..., 'tenant': ...}

    If provisioning fails the approval is rolled back with it.
    """
    store = get_store()
    now = utcnow()

    with store.transaction() as session:
        application = _lock(session, store, application_id)
        previous = application.status
        check_transition(application, APPROVED)

        provisioned = provision_tenant(session, ProvisioningRequest(
            farm_name=application.farm_name,
            plan=application.requested_plan,
            owner_id=application.applicant_id,
            tenant_id=tenant_id,
            slug_basis=slug_basis,
            animal_types=list(application.animal_types or []),
        ), store=store)

        application.status = APPROVED
        application.reviewed_by = reviewer_id
        application.reviewed_at = now
        if review_notes is not None:
            application.review_notes = review_notes
        application.assigned_tenant_id = provisioned.tenant_id
        application.assigned_farm_id = provisioned.farm_id
        application.updated_at = now
        session.flush()
        result = application.to_dict()

    finalize_provisioning(provisioned, actor_id=reviewer_id, details={'applicationId': application_id})
    _record_transition(result, previous, reviewer_id, action=AuditAction.APPLICATION_APPROVED,
                       details={'farmId': provisioned.farm_id})
    return {'application': result, 'tenant': provisioned.to_dict()}


def reject_application(
    application_id: str,
    reviewer_id: str,
    reason: str,
    review_notes: Optional[str] = None
) -> Dict[str, Any]:
    """Reject from any non-terminal status. A rejection reason is required."""
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("Rejection reason is required", payload={'field': 'rejectionReason'})

    store = get_store()
    now = utcnow()

    with store.transaction() as session:
        application = _lock(session, store, application_id)
        previous = application.status
        check_transition(application, REJECTED)
        application.status = REJECTED
        application.rejection_reason = reason.strip()
        application.reviewed_by = reviewer_id
        application.reviewed_at = now
        if review_notes is not None:
            application.review_notes = review_notes
        application.updated_at = now
        session.flush()
        result = application.to_dict()

    _record_transition(result, previous, reviewer_id, action=AuditAction.APPLICATION_REJECTED,
                       details={'reason': result['rejectionReason']})
    return result


def transition_application(application_id: str, target: str, actor_id: str, **kwargs) -> Dict[str, Any]:
    """
    Generic entry point: move an application to `target`.

    Extra keyword arguments are passed to the specific operation
    (e.g. reason= for rejected, slip_url= for payment_uploaded).
    """
    if target not in APPLICATION_STATUSES:
        raise ValidationError(f"Unknown application status '{target}'", payload={'field': 'status'})
    if target == PAYMENT_UPLOADED:
        return upload_payment_slip(application_id, kwargs.pop('applicant_id', None), **kwargs)
    if target == UNDER_REVIEW:
        return start_review(application_id, actor_id)
    if target == APPROVED:
        return approve_application(application_id, actor_id, **kwargs)['application']
    if target == REJECTED:
        return reject_application(application_id, actor_id, **kwargs)

    store = get_store()
    application = store.get_application(application_id)
    if application is None:
        raise NotFoundError(f"Application {application_id} not found")
    raise InvalidTransitionError(application.status, target)


def update_review_notes(application_id: str, reviewer_id: str, notes: Optional[str]) -> Dict[str, Any]:
    """Administrative correction: review notes stay editable in every status."""
    store = get_store()
    with store.transaction() as session:
        application = _lock(session, store, application_id)
        application.review_notes = notes
        application.updated_at = utcnow()
        session.flush()
        result = application.to_dict()

    log_action(AuditAction.UPDATE, 'farm_application', resource_id=application_id,
               tenant_id=result['assignedTenantId'], details={'field': 'reviewNotes'}, user_id=reviewer_id)
    return result


# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------

def get_application(application_id: str, applicant_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Fetch one application.

    With `applicant_id`, applications owned by someone else look absent.
    """
    application = get_store().get_application(application_id)
    if application is None or (applicant_id is not None and application.applicant_id != applicant_id):
        raise NotFoundError(f"Application {application_id} not found")
    return application.to_dict()


def list_applications(
    applicant_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> List[Dict[str, Any]]:
    """List applications, newest first, optionally by applicant and/or status."""
    if status is not None and status not in APPLICATION_STATUSES:
        raise ValidationError(f"Unknown application status '{status}'", payload={'field': 'status'})
    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))
    return [a.to_dict() for a in get_store().list_applications(applicant_id, status, limit, offset)]
