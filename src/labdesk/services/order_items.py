"""Fold the current and legacy panel linkages into one list of order items.

An order can reach the same panel through ``order_test_groups`` (current) and
``order_tests`` (legacy). Everything downstream works on ``OrderItem``: one
entry per panel, analytes unioned, both linkage ids kept so result records
entered against either path can be found.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from labdesk.models.panel import Analyte, OrderTest, OrderTestGroup, TestGroup


@dataclass
class OrderItem:
    """One panel of one order, whichever linkage path it came through."""

    test_group_id: str
    name: str
    current_link_id: str | None = None
    legacy_link_id: str | None = None
    analytes: list[Analyte] = field(default_factory=list)

    @property
    def link_id(self) -> str:
        """The linkage id new result records are written against."""
        return self.current_link_id or self.legacy_link_id or ""

    @property
    def lookup_ids(self) -> list[str]:
        """Linkage ids to match result records on, current first."""
        return [i for i in (self.current_link_id, self.legacy_link_id) if i]

    @property
    def expected(self) -> int:
        return len(self.analytes)

    def add_analytes(self, analytes: list[Analyte]) -> None:
        seen = {a.id for a in self.analytes}
        for a in analytes:
            if a.id not in seen:
                self.analytes.append(a)
                seen.add(a.id)


def fold_order_items(
    current_links: list[OrderTestGroup],
    legacy_links: list[OrderTest],
    groups: dict[str, TestGroup],
    analytes_by_group: dict[str, list[Analyte]],
) -> list[OrderItem]:
    """Merge both linkage shapes into one item per panel identity.

    Current links are folded first so their order and their link id win.
    Legacy links without a test group, or pointing at an unknown group,
    are dropped.
    """
    items: dict[str, OrderItem] = {}

    def _item_for(group_id: str, fallback_name: str) -> OrderItem:
        item = items.get(group_id)
        if item is None:
            group = groups.get(group_id)
            item = OrderItem(test_group_id=group_id, name=group.name if group else fallback_name)
            items[group_id] = item
        return item

    for link in current_links:
        if link.test_group_id not in groups:
            continue
        item = _item_for(link.test_group_id, link.test_name)
        if item.current_link_id is None:
            item.current_link_id = link.id
        item.add_analytes(analytes_by_group.get(link.test_group_id, []))

    for legacy in legacy_links:
        if not legacy.test_group_id or legacy.test_group_id not in groups:
            continue
        item = _item_for(legacy.test_group_id, legacy.test_name)
        if item.legacy_link_id is None:
            item.legacy_link_id = legacy.id
        item.add_analytes(analytes_by_group.get(legacy.test_group_id, []))

    return list(items.values())
