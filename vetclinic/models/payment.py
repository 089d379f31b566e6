from sqlalchemy import Column, String, ForeignKey, DateTime, Integer, Uuid
from sqlalchemy.orm import relationship
from vetclinic.models.base import Base
from sqlalchemy import Enum as SqlEnum
from enum import Enum
from datetime import datetime
from vetclinic.utils.money import Money
from decimal import Decimal
import uuid


class PaymentMethod(str, Enum):
    cash = "cash"
    card = "card"
    bank_transfer = "bank_transfer"
    other = "other"


class Payment(Base):
    __tablename__ = "payments"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)
    payment_method = Column(SqlEnum(PaymentMethod, name="payment_method"), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    reference_number = Column(String, nullable=True)
    processed_by = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    invoice = relationship("Invoice", back_populates="payments")

    @property
    def amount(self) -> Decimal:
        """Expose as Money when reading."""
        return Money.from_cents(self.amount_cents).amount

    @amount.setter
    def amount(self, value: Money | Decimal | str | float):
        """Allow setting as Money, Decimal, str, or float."""
        if not isinstance(value, Money):
            value = Money(value)
        self.amount_cents = value.to_cents()
