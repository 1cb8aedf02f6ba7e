"""Tests for variance classification."""

from decimal import Decimal

import pytest

from stocktake.models.inventory import VarianceType
from stocktake.services.variance import classify, variance_type_for


class TestClassify:
    """Test classify() arithmetic and labels."""

    def test_shortage(self):
        result = classify(20, 18)
        assert result.variance == Decimal("-2")
        assert result.variance_type == VarianceType.SHORTAGE
        assert result.variance_type.value == "faltante"

    def test_exact(self):
        result = classify(Decimal("5"), Decimal("5"))
        assert result.variance == 0
        assert result.variance_type == VarianceType.EXACT

    def test_surplus(self):
        result = classify(3, 7)
        assert result.variance == Decimal("4")
        assert result.variance_type == VarianceType.SURPLUS

    def test_shrinkage_counts_towards_physical(self):
        # 18 on the shelf + 2 written off as shrinkage accounts for all 20
        result = classify(20, 18, 2)
        assert result.variance == 0
        assert result.variance_type == VarianceType.EXACT

    def test_shrinkage_can_turn_shortage_into_surplus(self):
        result = classify(10, 9, 3)
        assert result.variance == Decimal("2")
        assert result.variance_type == VarianceType.SURPLUS

    def test_decimal_quantities_are_exact(self):
        result = classify("0.3", "0.1", "0.2")
        assert result.variance == 0
        assert result.variance_type == VarianceType.EXACT

    def test_floats_use_shortest_repr(self):
        result = classify(0.3, 0.1, 0.2)
        assert result.variance == 0

    def test_tiny_nonzero_is_not_exact(self):
        result = classify("1", "1.001")
        assert result.variance == Decimal("0.001")
        assert result.variance_type == VarianceType.SURPLUS


@pytest.mark.parametrize(
    "variance,expected",
    [
        (Decimal("0"), VarianceType.EXACT),
        (Decimal("-0"), VarianceType.EXACT),
        (Decimal("-0.5"), VarianceType.SHORTAGE),
        (Decimal("12"), VarianceType.SURPLUS),
    ],
)
def test_variance_type_for(variance, expected):
    assert variance_type_for(variance) == expected
