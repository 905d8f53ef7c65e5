"""Tests for folding legacy and current panel linkages into order items."""

from labdesk.models.panel import Analyte, OrderTest, OrderTestGroup, TestGroup
from labdesk.services.order_items import OrderItem, fold_order_items


def _analyte(aid, name=None):
    return Analyte(id=aid, name=name or aid)


CBC = TestGroup(id="g-cbc", name="CBC")
LFT = TestGroup(id="g-lft", name="Liver Function")
GROUPS = {CBC.id: CBC, LFT.id: LFT}


class TestFoldOrderItems:
    def test_current_only(self):
        items = fold_order_items(
            [OrderTestGroup(id="c1", order_id="o", test_group_id=CBC.id)],
            [],
            GROUPS,
            {CBC.id: [_analyte("hb"), _analyte("wbc")]},
        )
        assert len(items) == 1
        assert items[0].link_id == "c1"
        assert items[0].legacy_link_id is None
        assert items[0].expected == 2

    def test_same_panel_on_both_paths_merges(self):
        items = fold_order_items(
            [OrderTestGroup(id="c1", order_id="o", test_group_id=CBC.id)],
            [OrderTest(id="l1", order_id="o", test_group_id=CBC.id)],
            GROUPS,
            {CBC.id: [_analyte("hb"), _analyte("wbc")]},
        )
        assert len(items) == 1
        item = items[0]
        assert item.current_link_id == "c1"
        assert item.legacy_link_id == "l1"
        assert item.lookup_ids == ["c1", "l1"]
        # Same analytes reached twice count once
        assert item.expected == 2

    def test_legacy_only_uses_legacy_link(self):
        items = fold_order_items(
            [],
            [OrderTest(id="l1", order_id="o", test_group_id=LFT.id)],
            GROUPS,
            {LFT.id: [_analyte("alt")]},
        )
        assert items[0].link_id == "l1"
        assert items[0].name == "Liver Function"

    def test_legacy_without_group_is_dropped(self):
        items = fold_order_items(
            [],
            [
                OrderTest(id="l1", order_id="o", test_group_id=None, test_name="Free text"),
                OrderTest(id="l2", order_id="o", test_group_id="g-gone"),
            ],
            GROUPS,
            {},
        )
        assert items == []

    def test_current_links_come_first(self):
        items = fold_order_items(
            [OrderTestGroup(id="c2", order_id="o", test_group_id=LFT.id)],
            [OrderTest(id="l1", order_id="o", test_group_id=CBC.id)],
            GROUPS,
            {CBC.id: [_analyte("hb")], LFT.id: [_analyte("alt")]},
        )
        assert [i.test_group_id for i in items] == [LFT.id, CBC.id]


class TestOrderItem:
    def test_add_analytes_dedupes_keeping_first_order(self):
        item = OrderItem(test_group_id="g", name="G")
        item.add_analytes([_analyte("a"), _analyte("b")])
        item.add_analytes([_analyte("b"), _analyte("c")])
        assert [a.id for a in item.analytes] == ["a", "b", "c"]

    def test_empty_item(self):
        item = OrderItem(test_group_id="g", name="G")
        assert item.expected == 0
        assert item.lookup_ids == []
        assert item.link_id == ""
