"""Per-year counter backing human-readable Farm IDs."""
from sqlalchemy import Column, Integer
from farm_tenancy.database import Base


class FarmIdSequence(Base):
    """One row per calendar year. Only touched by the Farm ID allocator."""
    __tablename__ = 'farm_id_sequence'

    year = Column(Integer, primary_key=True, autoincrement=False)
    last_number = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f'<FarmIdSequence year={self.year} last_number={self.last_number}>'
