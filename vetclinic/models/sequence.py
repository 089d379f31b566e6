from sqlalchemy import Column, String, BigInteger
from vetclinic.models.base import Base


class SequenceCounter(Base):
    """Named counter row. Locked and incremented to hand out numbers."""
    __tablename__ = "sequence_counters"
    name = Column(String(50), primary_key=True)
    current_value = Column(BigInteger, nullable=False, default=0)
