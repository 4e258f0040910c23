"""
Integration tests for the farm application workflow and approval-time provisioning.
"""

import re
import pytest
from datetime import timedelta

from farm_tenancy.exceptions import ConflictError, InvalidTransitionError, NotFoundError, UnauthorizedError, ValidationError
from farm_tenancy.models import CustomFieldsConfig, FarmApplication, FarmIdSequence, Subscription, Tenant
from farm_tenancy.services import application_service, provisioning_service
from farm_tenancy.services.application_service import (
    approve_application, get_application, list_applications, reject_application,
    start_review, submit_application, transition_application, update_review_notes, upload_payment_slip
)
from farm_tenancy.utils.formatters import parse_datetime, utcnow

SLIP_URL = 'https://res.cloudinary.com/demo/payment-slips/slip-001.jpg'


def _to_review(application):
    """Drive a paid-plan application up to under_review."""
    upload_payment_slip(application['id'], application['applicantId'], SLIP_URL, provider='cloudinary')
    return start_review(application['id'], 'admin_1')


def _stored_status(session, application_id):
    session.expire_all()
    return session.get(FarmApplication, application_id).status


class TestSubmission:
    """Tests for submitting applications."""

    def test_paid_plan_starts_pending(self, make_application):
        application = make_application()
        assert application['status'] == 'pending'
        assert application['id'].startswith('APP-')
        assert application['assignedFarmId'] is None

    def test_submission_with_slip_moves_on(self, make_application):
        application = make_application(paymentSlipUrl=SLIP_URL, paymentAmount=499900)
        assert application['status'] == 'payment_uploaded'
        assert application['paymentAmount'] == 499900

    def test_free_plan_with_slip_is_refused(self, app_ctx, session, application_payload):
        with pytest.raises(InvalidTransitionError):
            submit_application('applicant_1', application_payload(requestedPlan='free', paymentSlipUrl=SLIP_URL))
        assert session.query(FarmApplication).count() == 0

    def test_null_plan_is_refused(self, app_ctx, application_payload):
        with pytest.raises(ValidationError):
            submit_application('applicant_1', application_payload(requestedPlan=None))

    def test_anonymous_submission_refused(self, app_ctx, application_payload):
        with pytest.raises(UnauthorizedError):
            submit_application(None, application_payload())

    def test_free_plan_auto_approval(self, app_ctx, application_payload):
        app_ctx.config['FREE_PLAN_AUTO_APPROVE'] = True
        application = submit_application('applicant_1', application_payload(requestedPlan='free'))
        assert application['status'] == 'approved'
        assert application['reviewedBy'] == 'system'
        assert application['assignedFarmId'] is not None


class TestFreePlanPath:
    """Free plans skip the payment slip."""

    def test_pending_to_under_review(self, make_application, session):
        application = make_application(requestedPlan='free')
        assert application['status'] == 'pending'

        reviewed = start_review(application['id'], 'admin_1')
        assert reviewed['status'] == 'under_review'

    def test_payment_slip_refused(self, make_application, session):
        application = make_application(requestedPlan='free')
        with pytest.raises(InvalidTransitionError):
            upload_payment_slip(application['id'], 'applicant_1', SLIP_URL)
        assert _stored_status(session, application['id']) == 'pending'


class TestMonotonicTransitions:
    """Skips and backward moves are refused and leave the row untouched."""

    def test_paid_plan_cannot_skip_slip(self, make_application, session):
        application = make_application()
        with pytest.raises(InvalidTransitionError):
            start_review(application['id'], 'admin_1')
        assert _stored_status(session, application['id']) == 'pending'

    def test_cannot_approve_before_review(self, make_application, session):
        application = make_application(paymentSlipUrl=SLIP_URL)
        with pytest.raises(InvalidTransitionError):
            approve_application(application['id'], 'admin_1')
        assert _stored_status(session, application['id']) == 'payment_uploaded'
        assert session.query(Tenant).count() == 0

    def test_cannot_go_backwards(self, make_application, session):
        application = _to_review(make_application())
        with pytest.raises(InvalidTransitionError):
            upload_payment_slip(application['id'], 'applicant_1', SLIP_URL)
        assert _stored_status(session, application['id']) == 'under_review'

    def test_terminal_after_rejection(self, make_application, session):
        application = make_application()
        rejected = reject_application(application['id'], 'admin_1', 'Incomplete documents')
        assert rejected['status'] == 'rejected'
        assert rejected['rejectionReason'] == 'Incomplete documents'

        for attempt in (
            lambda: start_review(application['id'], 'admin_1'),
            lambda: approve_application(application['id'], 'admin_1'),
            lambda: reject_application(application['id'], 'admin_1', 'again'),
        ):
            with pytest.raises(InvalidTransitionError) as exc_info:
                attempt()
            assert exc_info.value.message == 'Application has already been processed'
        assert _stored_status(session, application['id']) == 'rejected'

    def test_observed_statuses_follow_the_happy_path(self, make_application):
        application = make_application()
        observed = [application['status']]
        observed.append(upload_payment_slip(application['id'], 'applicant_1', SLIP_URL)['status'])
        observed.append(start_review(application['id'], 'admin_1')['status'])
        observed.append(approve_application(application['id'], 'admin_1')['application']['status'])
        assert observed == ['pending', 'payment_uploaded', 'under_review', 'approved']

    def test_rejection_requires_reason(self, make_application):
        application = make_application()
        with pytest.raises(ValidationError):
            reject_application(application['id'], 'admin_1', '  ')

    def test_generic_transition_entry_point(self, make_application):
        application = make_application(requestedPlan='free')
        assert transition_application(application['id'], 'under_review', 'admin_1')['status'] == 'under_review'
        with pytest.raises(InvalidTransitionError):
            transition_application(application['id'], 'pending', 'admin_1')
        with pytest.raises(ValidationError):
            transition_application(application['id'], 'archived', 'admin_1')


class TestApproval:
    """Approval provisions the tenant in the same transaction."""

    def test_professional_approval(self, make_application, session):
        application = _to_review(make_application(farmName='Sunrise Dairy Farm'))
        before = utcnow()

        result = approve_application(application['id'], 'admin_1', review_notes='Slip verified')

        approved = result['application']
        tenant = result['tenant']
        assert approved['status'] == 'approved'
        assert approved['reviewNotes'] == 'Slip verified'
        assert approved['assignedTenantId'] == tenant['tenantId']
        assert approved['assignedFarmId'] == tenant['farmId']
        assert re.match(rf'^MTD-{before.year}-\d{{4}}$', tenant['farmId'])
        assert tenant['slug'] == 'sunrise-dairy-farm'

        subscription = tenant['subscription']
        assert subscription['status'] == 'trial'
        assert subscription['plan'] == 'professional'
        trial_ends_at = parse_datetime(subscription['trialEndsAt'])
        assert before + timedelta(days=14) <= trial_ends_at <= utcnow() + timedelta(days=14)

        assert session.get(Tenant, tenant['tenantId']) is not None
        assert session.query(CustomFieldsConfig).filter_by(tenant_id=tenant['tenantId']).one().fields == []

    def test_slugs_are_unique(self, make_application):
        first = _to_review(make_application(farmName='Sunrise Dairy'))
        second = _to_review(make_application(applicant_id='applicant_2', farmName='Sunrise Dairy'))

        slug_1 = approve_application(first['id'], 'admin_1')['tenant']['slug']
        slug_2 = approve_application(second['id'], 'admin_1')['tenant']['slug']
        assert (slug_1, slug_2) == ('sunrise-dairy', 'sunrise-dairy-2')

    def test_farm_ids_are_sequential(self, make_application):
        farm_ids = []
        for _ in range(3):
            application = start_review(make_application(requestedPlan='free')['id'], 'admin_1')
            farm_ids.append(approve_application(application['id'], 'admin_1')['tenant']['farmId'])
        numbers = [int(farm_id.rsplit('-', 1)[1]) for farm_id in farm_ids]
        assert numbers == [1, 2, 3]

    def test_explicit_tenant_id(self, make_application):
        application = start_review(make_application(requestedPlan='free')['id'], 'admin_1')
        result = approve_application(application['id'], 'admin_1', tenant_id='org_2abc')
        assert result['tenant']['tenantId'] == 'org_2abc'


class TestProvisioningAtomicity:
    """A failure at any provisioning step leaves no tenant rows and no approval behind."""

    @pytest.mark.parametrize('builder', ['_build_tenant', '_build_subscription', '_build_custom_fields_config'])
    def test_failure_rolls_everything_back(self, make_application, session, monkeypatch, builder):
        application = start_review(make_application(requestedPlan='free')['id'], 'admin_1')

        def broken(*args, **kwargs):
            raise RuntimeError('disk full')
        monkeypatch.setattr(provisioning_service, builder, broken)

        with pytest.raises(RuntimeError):
            approve_application(application['id'], 'admin_1', tenant_id='org_atomic')

        session.expire_all()
        assert session.get(Tenant, 'org_atomic') is None
        assert session.query(Subscription).filter_by(tenant_id='org_atomic').count() == 0
        assert session.query(CustomFieldsConfig).filter_by(tenant_id='org_atomic').count() == 0
        assert session.query(FarmIdSequence).count() == 0
        assert _stored_status(session, application['id']) == 'under_review'

    def test_retry_after_failure_succeeds(self, make_application, session, monkeypatch):
        application = start_review(make_application(requestedPlan='free')['id'], 'admin_1')
        original = provisioning_service._build_subscription

        def broken(*args, **kwargs):
            raise RuntimeError('disk full')
        monkeypatch.setattr(provisioning_service, '_build_subscription', broken)
        with pytest.raises(RuntimeError):
            approve_application(application['id'], 'admin_1')

        monkeypatch.setattr(provisioning_service, '_build_subscription', original)
        result = approve_application(application['id'], 'admin_1')
        assert result['tenant']['farmId'].endswith('-0001')


class TestReads:

    def test_applicant_sees_only_own(self, make_application):
        mine = make_application(applicant_id='applicant_1')
        make_application(applicant_id='applicant_2')

        assert [a['id'] for a in list_applications(applicant_id='applicant_1')] == [mine['id']]
        assert get_application(mine['id'], applicant_id='applicant_1')['id'] == mine['id']
        with pytest.raises(NotFoundError):
            get_application(mine['id'], applicant_id='applicant_2')

    def test_filter_by_status(self, make_application):
        make_application()
        make_application(paymentSlipUrl=SLIP_URL)
        statuses = {a['status'] for a in list_applications(status='payment_uploaded')}
        assert statuses == {'payment_uploaded'}
        with pytest.raises(ValidationError):
            list_applications(status='archived')

    def test_payment_slip_only_by_owner(self, make_application):
        application = make_application(applicant_id='applicant_1')
        with pytest.raises(UnauthorizedError):
            upload_payment_slip(application['id'], 'applicant_2', SLIP_URL)

    def test_review_notes_editable_after_approval(self, make_application):
        application = start_review(make_application(requestedPlan='free')['id'], 'admin_1')
        approve_application(application['id'], 'admin_1')
        updated = update_review_notes(application['id'], 'admin_1', 'Called the owner')
        assert updated['reviewNotes'] == 'Called the owner'
        assert updated['status'] == 'approved'

    def test_unknown_application(self, app_ctx):
        with pytest.raises(NotFoundError):
            application_service.start_review('APP-NOPE-0000', 'admin_1')


class TestProvisioningConflicts:
    """A clash on a unique tenant column surfaces as ConflictError and undoes the approval."""

    def test_duplicate_tenant_id(self, make_application, session):
        first = start_review(make_application(requestedPlan='free')['id'], 'admin_1')
        approve_application(first['id'], 'admin_1', tenant_id='org_dup')
        second = start_review(make_application(requestedPlan='free')['id'], 'admin_1')

        with pytest.raises(ConflictError):
            approve_application(second['id'], 'admin_1', tenant_id='org_dup')

        assert _stored_status(session, second['id']) == 'under_review'
        assert session.query(Tenant).count() == 1
        assert session.get(FarmIdSequence, utcnow().year).last_number == 1

    def test_duplicate_slug(self, make_application, session, monkeypatch):
        first = start_review(make_application(requestedPlan='free', farmName='Same Name Dairy')['id'], 'admin_1')
        approve_application(first['id'], 'admin_1')
        second = start_review(make_application(requestedPlan='free', farmName='Same Name Dairy')['id'], 'admin_1')

        # Both provisions picked the same free slug before either committed
        monkeypatch.setattr('farm_tenancy.services.store_service.PrimaryStore.slug_exists',
                            lambda self, session, slug: False)

        with pytest.raises(ConflictError):
            approve_application(second['id'], 'admin_1')

        assert _stored_status(session, second['id']) == 'under_review'
        assert session.query(Tenant).filter_by(slug='same-name-dairy').count() == 1
        assert session.get(FarmIdSequence, utcnow().year).last_number == 1
