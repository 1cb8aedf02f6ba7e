"""Variance classification for counted items.

``variance = (physical_count + shrinkage) - system_stock``. Zero is compared
exactly; callers quantize inputs first if decimal artifacts matter.
"""

from decimal import Decimal
from typing import NamedTuple, Union

from stocktake.models.inventory import VarianceType

Number = Union[Decimal, int, float, str]


class VarianceResult(NamedTuple):
    variance: Decimal
    variance_type: VarianceType


def _as_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def variance_type_for(variance: Decimal) -> VarianceType:
    if variance == 0:
        return VarianceType.EXACT
    if variance < 0:
        return VarianceType.SHORTAGE
    return VarianceType.SURPLUS


def classify(system_stock: Number, physical_count: Number, shrinkage: Number = 0) -> VarianceResult:
    """Compute the signed variance of a count and classify it.

    >>> classify(20, 18, 1)
    VarianceResult(variance=Decimal('-1'), variance_type=<VarianceType.SHORTAGE: 'faltante'>)
    """
    variance = (_as_decimal(physical_count) + _as_decimal(shrinkage)) - _as_decimal(system_stock)
    return VarianceResult(variance, variance_type_for(variance))
