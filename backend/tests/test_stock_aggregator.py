"""Tests for system stock aggregation."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from stocktake.models.product import Product
from stocktake.models.warehouse import WarehouseStock
from stocktake.services.catalog_provider import CatalogProduct, WarehouseStockEntry
from stocktake.services.stock_aggregator import aggregate_stock, system_stock, to_quantity


def make_product(stock=None, records=()):
    return CatalogProduct(
        id=1,
        sku="SKU-1",
        name="Product",
        stock=stock,
        warehouse_stocks=tuple(WarehouseStockEntry(wid, qty) for wid, qty in records),
    )


class TestToQuantity:
    """to_quantity never raises and treats junk as zero."""

    @pytest.mark.parametrize("value", [None, "", "   ", "abc", "NaN", "Infinity", "-inf", float("nan"), True, object()])
    def test_junk_is_zero(self, value):
        assert to_quantity(value) == Decimal("0")

    @pytest.mark.parametrize(
        "value,expected",
        [
            (5, Decimal("5")),
            ("12.5", Decimal("12.5")),
            (" 7 ", Decimal("7")),
            (0.1, Decimal("0.1")),
            (Decimal("3.250"), Decimal("3.25")),
        ],
    )
    def test_numbers(self, value, expected):
        assert to_quantity(value) == expected


class TestSystemStock:
    """Scope-dependent baseline selection."""

    def test_specific_warehouse_uses_its_record(self):
        product = make_product(stock=99, records=[(1, 4), (2, 6)])
        assert system_stock(product, 2) == Decimal("6")

    def test_specific_warehouse_without_record_is_zero(self):
        product = make_product(stock=99, records=[(1, 4)])
        assert system_stock(product, 3) == Decimal("0")

    def test_specific_warehouse_ignores_legacy_field(self):
        product = make_product(stock=99)
        assert system_stock(product, 1) == Decimal("0")

    def test_global_sums_records(self):
        product = make_product(stock=99, records=[(1, 4), (2, "6.5")])
        assert system_stock(product) == Decimal("10.5")

    def test_global_falls_back_to_legacy_field_without_records(self):
        product = make_product(stock="42")
        assert system_stock(product) == Decimal("42")

    def test_records_summing_to_zero_do_not_fall_back(self):
        product = make_product(stock=99, records=[(1, 0), (2, 0)])
        assert system_stock(product) == Decimal("0")

    def test_malformed_record_quantity_counts_as_zero(self):
        product = make_product(records=[(1, None), (2, "oops"), (3, 5)])
        assert system_stock(product) == Decimal("5")

    def test_missing_legacy_field_is_zero(self):
        assert system_stock(SimpleNamespace()) == Decimal("0")

    def test_orm_product(self):
        product = Product(tenant_id="t", sku="X", name="X", stock=Decimal("8"))
        product.warehouse_stocks = [
            WarehouseStock(warehouse_id=1, quantity=Decimal("2")),
            WarehouseStock(warehouse_id=2, quantity=Decimal("3")),
        ]
        assert system_stock(product) == Decimal("5")
        assert system_stock(product, 2) == Decimal("3")


class TestAggregateStock:

    def test_sum_over_products(self):
        products = [
            make_product(stock=3),
            make_product(records=[(1, 2), (2, 5)]),
        ]
        assert aggregate_stock(products) == Decimal("10")
        assert aggregate_stock(products, 2) == Decimal("5")

    def test_empty_list(self):
        assert aggregate_stock([]) == Decimal("0")
