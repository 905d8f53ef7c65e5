"""Panel (test group), analyte and order-linkage models and repositories."""

from __future__ import annotations

from typing import Any, ClassVar

from labdesk.models.base import BaseRepository, LabModel, LinkModel, placeholders


class TestGroup(LabModel):
    """A named bundle of analytes ordered together (a panel)."""

    __test__ = False  # not a pytest class

    name: str
    code: str = ""
    category: str = ""
    department: str = ""
    tat_hours: int | None = None


class Analyte(LabModel):
    """A measurable parameter definition."""

    name: str
    unit: str = ""
    reference_range: str = ""


class TestGroupAnalyte(LinkModel):
    """Membership of an analyte in a panel."""

    __test__ = False

    test_group_id: str
    analyte_id: str


class OrderTestGroup(LinkModel):
    """Current linkage between an order and a panel."""

    order_id: str
    test_group_id: str
    test_name: str = ""


class OrderTest(LinkModel):
    """Legacy linkage between an order and a panel; test_group_id may be missing."""

    order_id: str
    test_group_id: str | None = None
    test_name: str = ""


class TestGroupRepository(BaseRepository):
    __test__ = False

    table: ClassVar[str] = "test_groups"
    model_class: ClassVar[type[LabModel]] = TestGroup  # type: ignore[assignment]

    def find_by_name(self, name: str) -> TestGroup | None:
        row = self.db.fetchone(
            "SELECT * FROM test_groups WHERE LOWER(name) = LOWER(?) OR LOWER(code) = LOWER(?)",
            (name, name),
        )
        return TestGroup.from_row(row) if row else None

    def list_all(self) -> list[TestGroup]:  # type: ignore[override]
        rows = self.db.fetchall("SELECT * FROM test_groups ORDER BY name")
        return [TestGroup.from_row(r) for r in rows]

    def get_many(self, group_ids: list[str]) -> dict[str, TestGroup]:
        if not group_ids:
            return {}
        rows = self.db.fetchall(
            f"SELECT * FROM test_groups WHERE id IN ({placeholders(group_ids)})",
            tuple(group_ids),
        )
        return {r["id"]: TestGroup.from_row(r) for r in rows}  # type: ignore[misc]


class AnalyteRepository(BaseRepository):
    table: ClassVar[str] = "analytes"
    model_class: ClassVar[type[LabModel]] = Analyte  # type: ignore[assignment]

    def find_by_name(self, name: str) -> Analyte | None:
        row = self.db.fetchone("SELECT * FROM analytes WHERE LOWER(name) = LOWER(?)", (name,))
        return Analyte.from_row(row) if row else None  # type: ignore[return-value]

    def get_for_groups(self, group_ids: list[str]) -> dict[str, list[Analyte]]:
        """Return each panel's analytes, keyed by test_group_id, in name order."""
        result: dict[str, list[Analyte]] = {gid: [] for gid in group_ids}
        if not group_ids:
            return result
        rows = self.db.fetchall(
            "SELECT a.*, tga.test_group_id AS _group_id FROM analytes a "
            "JOIN test_group_analytes tga ON tga.analyte_id = a.id "
            f"WHERE tga.test_group_id IN ({placeholders(group_ids)}) "
            "ORDER BY a.name",
            tuple(group_ids),
        )
        for r in rows:
            d = {k: r[k] for k in r.keys() if k != "_group_id"}
            result.setdefault(r["_group_id"], []).append(Analyte(**d))
        return result


class TestGroupAnalyteRepository(BaseRepository):
    __test__ = False

    table: ClassVar[str] = "test_group_analytes"
    model_class: ClassVar[type[LabModel]] = TestGroupAnalyte  # type: ignore[assignment]

    def link(self, test_group_id: str, analyte_id: str) -> TestGroupAnalyte:
        """Add an analyte to a panel; linking twice is a no-op."""
        row = self.db.fetchone(
            "SELECT * FROM test_group_analytes WHERE test_group_id = ? AND analyte_id = ?",
            (test_group_id, analyte_id),
        )
        if row:
            return TestGroupAnalyte.from_row(row)  # type: ignore[return-value]
        link = TestGroupAnalyte(test_group_id=test_group_id, analyte_id=analyte_id)
        self.insert(link)
        return link


class OrderTestGroupRepository(BaseRepository):
    table: ClassVar[str] = "order_test_groups"
    model_class: ClassVar[type[LabModel]] = OrderTestGroup  # type: ignore[assignment]

    def get_for_order(self, order_id: str) -> list[OrderTestGroup]:
        rows = self.db.fetchall(
            "SELECT * FROM order_test_groups WHERE order_id = ? ORDER BY created_at, id",
            (order_id,),
        )
        return [OrderTestGroup.from_row(r) for r in rows]  # type: ignore[misc]

    def names_by_order(self, order_ids: list[str]) -> dict[str, list[str]]:
        if not order_ids:
            return {}
        rows = self.db.fetchall(
            f"SELECT order_id, test_name FROM order_test_groups WHERE order_id IN ({placeholders(order_ids)})",
            tuple(order_ids),
        )
        names: dict[str, list[str]] = {}
        for r in rows:
            names.setdefault(r["order_id"], []).append(r["test_name"])
        return names


class OrderTestRepository(BaseRepository):
    table: ClassVar[str] = "order_tests"
    model_class: ClassVar[type[LabModel]] = OrderTest  # type: ignore[assignment]

    def get_for_order(self, order_id: str) -> list[OrderTest]:
        rows = self.db.fetchall(
            "SELECT * FROM order_tests WHERE order_id = ? ORDER BY created_at, id",
            (order_id,),
        )
        return [OrderTest.from_row(r) for r in rows]  # type: ignore[misc]

