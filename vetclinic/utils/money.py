from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal('0.01')


class Money:
    def __init__(self, amount: str | float | int | Decimal = 0):
        if isinstance(amount, Money):
            amount = amount.amount
        if isinstance(amount, float):
            amount = str(amount)
        self.amount = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)

    @classmethod
    def from_cents(cls, cents: int | None) -> 'Money':
        return cls(Decimal(cents or 0) / Decimal('100'))

    @classmethod
    def sum(cls, values) -> 'Money':
        total = cls(0)
        for value in values:
            total = total + value
        return total

    def to_cents(self) -> int:
        # multiply by 100 and round to nearest cent
        return int((self.amount * Decimal('100')).to_integral_value(rounding=ROUND_HALF_UP))

    def percent(self, rate: int | Decimal | float) -> 'Money':
        """Return `rate` percent of this amount, rounded to the cent."""
        return Money(self.amount * Decimal(str(rate)) / Decimal('100'))

    def __add__(self, other: 'Money') -> 'Money':
        return Money(self.amount + Money(other).amount)

    def __radd__(self, other) -> 'Money':
        # lets the builtin sum() start from 0
        return Money(Money(other).amount + self.amount)

    def __sub__(self, other: 'Money') -> 'Money':
        return Money(self.amount - Money(other).amount)

    def __mul__(self, factor: int | Decimal | float) -> 'Money':
        return Money(self.amount * Decimal(str(factor)))

    def __eq__(self, other) -> bool:
        if isinstance(other, Money):
            return self.amount == other.amount
        if isinstance(other, (int, Decimal, str)):
            return self.amount == Money(other).amount
        return NotImplemented

    def __lt__(self, other: 'Money') -> bool:
        return self.amount < Money(other).amount

    def __le__(self, other: 'Money') -> bool:
        return self.amount <= Money(other).amount

    def __gt__(self, other: 'Money') -> bool:
        return self.amount > Money(other).amount

    def __ge__(self, other: 'Money') -> bool:
        return self.amount >= Money(other).amount

    def __hash__(self):
        return hash(self.amount)

    def __str__(self) -> str:
        return f"{self.amount:.2f}"

    def __repr__(self) -> str:
        return f"Money({str(self.amount)})"
