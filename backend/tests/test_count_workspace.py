"""Tests for the in-memory count workspace."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from stocktake.core.exceptions import (
    CatalogUnavailableError,
    EmptySelectionError,
    InvalidQuantityError,
    ShrinkageNotesDisabledError,
    UncountedSelectionError,
    UnknownProductError,
    UnknownWarehouseError,
    WorkspaceNotFoundError,
)
from stocktake.models.inventory import VarianceType
from stocktake.services.catalog_provider import build_snapshot
from stocktake.services.count_workspace import CountWorkspace, WorkspaceRegistry, parse_quantity

TENANT = "tenant-a"


class StaticProvider:
    """Catalog provider returning a fixed snapshot."""

    def __init__(self, products, warehouses):
        self.snapshot = build_snapshot(products, warehouses)
        self.calls = 0

    def load(self, tenant_id):
        self.calls += 1
        return self.snapshot


class FailingProvider:
    def load(self, tenant_id):
        raise ConnectionError("catalog service timed out")


WAREHOUSES = [{"id": 1, "name": "Main"}, {"id": 2, "name": "Back"}]


@pytest.fixture
def provider():
    return StaticProvider(
        [
            {"id": 1, "sku": "P1", "name": "Olive Oil", "warehouse_stocks": [{"warehouse_id": 1, "quantity": 20}]},
            {"id": 2, "sku": "P2", "name": "Sea Salt", "warehouse_stocks": [{"warehouse_id": 1, "quantity": 5}]},
            {"id": 3, "sku": "P3", "name": "Flour", "stock": 7},
        ],
        WAREHOUSES,
    )


@pytest.fixture
def workspace(provider):
    return CountWorkspace.open(provider, TENANT, warehouse_id=1)


class TestParseQuantity:

    @pytest.mark.parametrize("value", [None, "", "  "])
    def test_blank_is_zero(self, value):
        assert parse_quantity("physical_count", value) == Decimal("0")

    @pytest.mark.parametrize("value,expected", [("18", Decimal("18")), (2.5, Decimal("2.5")), (3, Decimal("3"))])
    def test_numbers(self, value, expected):
        assert parse_quantity("physical_count", value) == expected

    @pytest.mark.parametrize("value", ["abc", "-1", -0.5, "NaN", "inf", True, [1]])
    def test_rejects_malformed(self, value):
        with pytest.raises(InvalidQuantityError) as exc:
            parse_quantity("shrinkage", value)
        assert exc.value.field == "shrinkage"

    @pytest.mark.parametrize(
        "value,expected",
        [("19.999", Decimal("19.999")), ("0.5", Decimal("0.500")), (Decimal("7"), Decimal("7.000"))],
    )
    def test_keeps_three_decimal_places(self, value, expected):
        quantity = parse_quantity("physical_count", value)
        assert quantity == expected
        assert quantity.as_tuple().exponent == -3

    @pytest.mark.parametrize("value", ["19.9996", "0.0001", Decimal("1.2345"), "1000000000"])
    def test_rejects_unstorable_quantities(self, value):
        with pytest.raises(InvalidQuantityError):
            parse_quantity("physical_count", value)


class TestOpenAndReload:

    def test_open_loads_catalog(self, workspace, provider):
        assert provider.calls == 1
        assert workspace.warehouse_id == 1
        assert [p.id for p in workspace.visible_products()] == [1, 2, 3]

    def test_open_with_unknown_warehouse(self, provider):
        with pytest.raises(UnknownWarehouseError):
            CountWorkspace.open(provider, TENANT, warehouse_id=99)

    def test_catalog_failure_prevents_opening(self):
        with pytest.raises(CatalogUnavailableError) as exc:
            CountWorkspace.open(FailingProvider(), TENANT)
        assert isinstance(exc.value.cause, ConnectionError)

    def test_failed_reload_blocks_counting_until_reloaded(self, workspace, provider):
        workspace.set_physical_count(1, 18)
        with pytest.raises(CatalogUnavailableError):
            workspace.reload(FailingProvider())
        assert workspace.available is False
        with pytest.raises(CatalogUnavailableError):
            workspace.set_physical_count(2, 5)
        with pytest.raises(CatalogUnavailableError):
            workspace.visible_products()

        workspace.reload(provider)
        assert workspace.available is True
        assert workspace.entry(1).physical_count == Decimal("18")

    def test_reload_drops_vanished_products_and_warehouse(self, workspace):
        workspace.set_physical_count(2, 4)
        workspace.select(2)
        smaller = StaticProvider(
            [{"id": 1, "sku": "P1", "name": "Olive Oil", "stock": 3}],
            [{"id": 2, "name": "Back"}],
        )
        workspace.reload(smaller)
        assert workspace.entry(2) is None
        assert workspace.selected_ids == []
        assert workspace.warehouse_id is None


class TestDraftEntries:

    def test_physical_count_computes_variance(self, workspace):
        item = workspace.set_physical_count(1, "18")
        assert item.system_stock == Decimal("20")
        assert item.variance == Decimal("-2")
        assert item.variance_type == VarianceType.SHORTAGE

    def test_shrinkage_keeps_physical_count(self, workspace):
        workspace.set_physical_count(1, 18)
        item = workspace.set_shrinkage(1, 2)
        assert item.physical_count == Decimal("18")
        assert item.variance == 0
        assert item.variance_type == VarianceType.EXACT

    def test_malformed_input_leaves_draft_untouched(self, workspace):
        workspace.set_physical_count(1, 18)
        with pytest.raises(InvalidQuantityError):
            workspace.set_physical_count(1, "eighteen")
        with pytest.raises(InvalidQuantityError):
            workspace.set_shrinkage(1, -1)
        assert workspace.entry(1).physical_count == Decimal("18")
        assert workspace.entry(1).shrinkage == Decimal("0")

    def test_unknown_product(self, workspace):
        with pytest.raises(UnknownProductError):
            workspace.set_physical_count(42, 1)

    def test_notes_disabled_without_shrinkage(self, workspace):
        with pytest.raises(ShrinkageNotesDisabledError):
            workspace.set_shrinkage_notes(1, "broken bottle")
        workspace.set_physical_count(1, 18)
        with pytest.raises(ShrinkageNotesDisabledError):
            workspace.set_shrinkage_notes(1, "broken bottle")

    def test_notes_cleared_when_shrinkage_reset(self, workspace):
        workspace.set_shrinkage(1, 1)
        item = workspace.set_shrinkage_notes(1, "broken bottle")
        assert item.shrinkage_notes == "broken bottle"
        item = workspace.set_shrinkage(1, 0)
        assert item.shrinkage_notes == ""

    def test_scope_change_recomputes_drafts(self, workspace):
        workspace.set_physical_count(1, 18)
        workspace.set_physical_count(3, 7)
        assert workspace.entry(3).variance == Decimal("7")

        workspace.set_scope(None)
        assert workspace.entry(1).system_stock == Decimal("20")
        assert workspace.entry(3).system_stock == Decimal("7")
        assert workspace.entry(3).variance_type == VarianceType.EXACT

        workspace.set_scope(2)
        assert workspace.entry(1).system_stock == Decimal("0")
        assert workspace.entry(1).variance_type == VarianceType.SURPLUS

    def test_scope_rejects_unknown_warehouse(self, workspace):
        with pytest.raises(UnknownWarehouseError):
            workspace.set_scope(99)
        assert workspace.warehouse_id == 1

    def test_aggregate_visible_stock(self, workspace):
        assert workspace.aggregate_visible_stock() == Decimal("25")
        workspace.set_scope(None)
        assert workspace.aggregate_visible_stock() == Decimal("32")


class TestFilterAndSelection:

    @pytest.fixture
    def large_workspace(self):
        products = [
            {"id": i, "sku": f"SKU-{i:03d}", "name": f"Item {i}", "stock": i}
            for i in range(1, 51)
        ]
        products[9]["name"] = "Red Wine"
        products[19]["name"] = "White Wine"
        return CountWorkspace.open(StaticProvider(products, WAREHOUSES), TENANT)

    def test_select_all_only_selects_visible(self, large_workspace):
        large_workspace.set_filter(search="wine")
        assert [p.id for p in large_workspace.visible_products()] == [10, 20]
        large_workspace.select_all()
        assert large_workspace.selected_ids == [10, 20]

    def test_select_all_false_clears(self, large_workspace):
        large_workspace.select(1)
        large_workspace.select(2)
        large_workspace.select_all(False)
        assert large_workspace.selected_ids == []

    def test_search_matches_sku_case_insensitive(self, large_workspace):
        large_workspace.set_filter(search="sku-04")
        assert [p.id for p in large_workspace.visible_products()] == list(range(40, 50))

    def test_variances_only(self, workspace):
        workspace.set_physical_count(1, 18)
        workspace.set_physical_count(2, 5)
        workspace.set_filter(variances_only=True)
        assert [p.id for p in workspace.visible_products()] == [1]

    def test_selected_items_in_selection_order(self, workspace):
        workspace.set_physical_count(1, 18)
        workspace.set_physical_count(2, 5)
        workspace.select(2)
        workspace.select(1)
        assert [i.product_id for i in workspace.selected_items()] == [2, 1]

    def test_empty_selection(self, workspace):
        with pytest.raises(EmptySelectionError):
            workspace.selected_items()

    def test_selected_without_count(self, workspace):
        workspace.set_physical_count(1, 18)
        workspace.select(1)
        workspace.select(2)
        with pytest.raises(UncountedSelectionError) as exc:
            workspace.selected_items()
        assert exc.value.product_ids == [2]

    def test_deselect_and_reset(self, workspace):
        workspace.set_physical_count(1, 18)
        workspace.select(1)
        workspace.deselect(1)
        assert workspace.selected_ids == []
        workspace.select(1)
        workspace.reset()
        assert workspace.selected_ids == []
        assert workspace.entries == {}


class TestWorkspaceRegistry:

    def test_get_is_tenant_scoped(self, workspace):
        registry = WorkspaceRegistry(idle_timeout=timedelta(hours=1))
        workspace_id = registry.add(workspace)
        assert registry.get(TENANT, workspace_id) is workspace
        with pytest.raises(WorkspaceNotFoundError):
            registry.get("tenant-b", workspace_id)

    def test_discard(self, workspace):
        registry = WorkspaceRegistry(idle_timeout=timedelta(hours=1))
        workspace_id = registry.add(workspace)
        registry.discard(TENANT, workspace_id)
        assert len(registry) == 0
        with pytest.raises(WorkspaceNotFoundError):
            registry.discard(TENANT, workspace_id)

    def test_idle_workspaces_are_purged(self, workspace):
        registry = WorkspaceRegistry(idle_timeout=timedelta(minutes=30))
        registry.add(workspace)
        later = datetime.now(timezone.utc) + timedelta(minutes=31)
        assert registry.purge_idle(later) == 1
        assert len(registry) == 0
