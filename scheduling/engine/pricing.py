from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from scheduling.core.errors import ValidationError
from scheduling.engine.selection import ensure_contiguous
from scheduling.engine.types import Slot

CENTS = Decimal('0.01')


@dataclass(frozen=True)
class PriceEstimate:
    duration: timedelta
    price: Decimal

    @property
    def duration_hours(self) -> Decimal:
        return Decimal(int(self.duration.total_seconds())) / Decimal(3600)


def estimate_price(slots: list[Slot], hourly_rate: Union[Decimal, int, float, str]) -> PriceEstimate:
    ordered = ensure_contiguous(slots)
    rate = Decimal(str(hourly_rate))
    if rate < 0:
        raise ValidationError('Hourly rate cannot be negative.')

    duration = sum((slot.duration for slot in ordered), timedelta())
    hours = Decimal(int(duration.total_seconds())) / Decimal(3600)
    price = (hours * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return PriceEstimate(duration=duration, price=price)
