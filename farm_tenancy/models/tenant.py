"""Tenant model - represents each farm organization using the platform."""
from sqlalchemy import Column, String, Text, DateTime, Index
from farm_tenancy.database import Base
from farm_tenancy.models.types import JSONType
from farm_tenancy.utils.formatters import utcnow, isoformat


DEFAULT_PRIMARY_COLOR = '#1F7A3D'
DEFAULT_ACCENT_COLOR = '#F59E0B'
DEFAULT_LANGUAGE = 'en'
DEFAULT_CURRENCY = 'PKR'
DEFAULT_TIMEZONE = 'Asia/Karachi'
DEFAULT_ANIMAL_TYPES = ['cow', 'buffalo', 'chicken']

SUPPORTED_LANGUAGES = ('en', 'ur')
SUPPORTED_CURRENCIES = ('PKR', 'USD')


class Tenant(Base):
    """Tenant model - each farm. The id is the identity provider's organization id."""

    __tablename__ = 'tenants'

    id = Column(String(255), primary_key=True)
    slug = Column(String(255), nullable=False, unique=True)  # URL-safe identifier
    farm_name = Column(String(255), nullable=False)  # Display name

    # Branding
    logo_url = Column(Text, nullable=True)  # Reference returned by object storage
    primary_color = Column(String(7), nullable=False, default=DEFAULT_PRIMARY_COLOR)
    accent_color = Column(String(7), nullable=False, default=DEFAULT_ACCENT_COLOR)

    # Locale
    language = Column(String(10), nullable=False, default=DEFAULT_LANGUAGE)
    currency = Column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    timezone = Column(String(50), nullable=False, default=DEFAULT_TIMEZONE)

    animal_types = Column(JSONType, nullable=False, default=lambda: list(DEFAULT_ANIMAL_TYPES))

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)  # Soft delete only

    __table_args__ = (
        Index('tenants_deleted_at_idx', 'deleted_at'),
    )

    def __repr__(self):
        return f"<Tenant(id='{self.id}', slug='{self.slug}', farm_name='{self.farm_name}')>"

    @property
    def is_deleted(self):
        """Check if tenant has been soft-deleted."""
        return self.deleted_at is not None

    def to_dict(self):
        """JSON-safe config payload (also what the cache stores)."""
        return {
            'id': self.id,
            'slug': self.slug,
            'farmName': self.farm_name,
            'logoUrl': self.logo_url,
            'primaryColor': self.primary_color,
            'accentColor': self.accent_color,
            'language': self.language,
            'currency': self.currency,
            'timezone': self.timezone,
            'animalTypes': list(self.animal_types or []),
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
            'deletedAt': isoformat(self.deleted_at),
        }
