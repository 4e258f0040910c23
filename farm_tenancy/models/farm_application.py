"""
Farm Application model - one row per onboarding attempt.
"""
from sqlalchemy import Column, String, Integer, Text, DateTime, CheckConstraint, Index
from farm_tenancy.database import Base
from farm_tenancy.models.types import JSONType
from farm_tenancy.utils.formatters import utcnow, isoformat


APPLICATION_STATUSES = ('pending', 'payment_uploaded', 'under_review', 'approved', 'rejected')
TERMINAL_APPLICATION_STATUSES = ('approved', 'rejected')
PAYMENT_SLIP_PROVIDERS = ('cloudinary', 'supabase', 's3')


class FarmApplication(Base):
    """
    Request to create a new tenant.

    Mutated only through the application workflow service. Immutable once
    approved or rejected, except for the administrative correction fields
    (review_notes).
    """
    __tablename__ = 'farm_applications'

    id = Column(String(64), primary_key=True)
    applicant_id = Column(String(255), nullable=False)

    # Contact / farm details
    farm_name = Column(String(255), nullable=False)
    owner_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=False)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    province = Column(String(100), nullable=True)
    animal_types = Column(JSONType, nullable=False, default=list)
    estimated_animals = Column(Integer, nullable=False, default=0)

    requested_plan = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default='pending')

    # Payment slip (URL returned by object storage)
    payment_slip_url = Column(Text, nullable=True)
    payment_slip_provider = Column(String(20), nullable=True)
    payment_amount = Column(Integer, nullable=True)  # paisa
    payment_date = Column(DateTime, nullable=True)
    payment_reference = Column(String(255), nullable=True)

    # Review
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Set once on approval
    assigned_tenant_id = Column(String(255), nullable=True)
    assigned_farm_id = Column(String(32), nullable=True, unique=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'payment_uploaded', 'under_review', 'approved', 'rejected')",
            name='check_application_status'
        ),
        CheckConstraint(
            "requested_plan IN ('free', 'professional', 'farm', 'enterprise')",
            name='check_application_plan'
        ),
        Index('farm_applications_applicant_idx', 'applicant_id'),
        Index('farm_applications_status_idx', 'status'),
    )

    def __repr__(self):
        return f'<FarmApplication id={self.id} status={self.status} plan={self.requested_plan}>'

    @property
    def is_terminal(self):
        return self.status in TERMINAL_APPLICATION_STATUSES

    @property
    def is_paid_plan(self):
        return self.requested_plan != 'free'

    def to_dict(self):
        return {
            'id': self.id,
            'applicantId': self.applicant_id,
            'farmName': self.farm_name,
            'ownerName': self.owner_name,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'city': self.city,
            'province': self.province,
            'animalTypes': list(self.animal_types or []),
            'estimatedAnimals': self.estimated_animals,
            'requestedPlan': self.requested_plan,
            'status': self.status,
            'paymentSlipUrl': self.payment_slip_url,
            'paymentSlipProvider': self.payment_slip_provider,
            'paymentAmount': self.payment_amount,
            'paymentDate': isoformat(self.payment_date),
            'paymentReference': self.payment_reference,
            'reviewedBy': self.reviewed_by,
            'reviewedAt': isoformat(self.reviewed_at),
            'reviewNotes': self.review_notes,
            'rejectionReason': self.rejection_reason,
            'assignedTenantId': self.assigned_tenant_id,
            'assignedFarmId': self.assigned_farm_id,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }
