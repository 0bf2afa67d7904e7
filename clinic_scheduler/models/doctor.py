"""Doctor model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from clinic_scheduler.database import Base


class Doctor(Base):
    """Read-only directory entry; doctor accounts are managed elsewhere."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    speciality = Column(String)
    fee_amount = Column(Integer, nullable=False, default=0)
    available = Column(Boolean, nullable=False, default=True)
