import unittest
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Uuid

from app.services.grid import kinds
from app.services.grid.errors import InvalidFilterValue, UnsupportedDataKind
from app.services.grid.kinds import strategy_for


class KindRegistryTests(unittest.TestCase):
    def test_every_declared_kind_has_a_handler(self):
        for kind in ("text", "number", "bignumber", "guid", "date", "datetime", "set", "boolean"):
            self.assertEqual(strategy_for(kind).kind, kind)

    def test_unknown_kind_is_rejected(self):
        with self.assertRaises(UnsupportedDataKind) as ctx:
            strategy_for("money", "amount")
        self.assertEqual(ctx.exception.data_kind, "money")
        self.assertEqual(ctx.exception.column, "amount")

    def test_kind_lookup_is_case_sensitive_and_type_checked(self):
        with self.assertRaises(UnsupportedDataKind):
            strategy_for("TEXT")
        with self.assertRaises(UnsupportedDataKind):
            strategy_for(None)

    def test_pattern_operators_only_for_text(self):
        for kind in kinds.DATA_KINDS:
            supports_contains = kinds.CONTAINS in strategy_for(kind).operators
            self.assertEqual(supports_contains, kind == kinds.TEXT, kind)


class KindCoercionTests(unittest.TestCase):
    def test_boolean_accepts_string_values(self):
        handler = strategy_for("boolean")
        self.assertTrue(handler.validate("active", "true"))
        self.assertTrue(handler.validate("active", "Yes"))
        self.assertFalse(handler.validate("active", "0"))
        self.assertFalse(handler.validate("active", False))

    def test_boolean_invalid_value_reports_column_and_kind(self):
        with self.assertRaises(InvalidFilterValue) as ctx:
            strategy_for("boolean").validate("active", "maybe")
        self.assertEqual(ctx.exception.column, "active")
        self.assertEqual(ctx.exception.data_kind, "boolean")
        self.assertEqual(ctx.exception.raw, "maybe")

    def test_numbers_accept_string_values(self):
        handler = strategy_for("number")
        self.assertEqual(handler.validate("qty", "42"), 42)
        self.assertIsInstance(handler.validate("qty", "42"), int)
        self.assertAlmostEqual(handler.validate("qty", "3.14"), 3.14)
        self.assertAlmostEqual(handler.validate("qty", "3,14"), 3.14)

    def test_number_rejects_non_numeric_and_out_of_range(self):
        handler = strategy_for("number")
        for raw in ("abc", "", True, None, [1], "nan", "inf", 2**63):
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidFilterValue):
                    handler.validate("qty", raw)

    def test_bignumber_keeps_arbitrary_precision(self):
        handler = strategy_for("bignumber")
        self.assertEqual(handler.validate("amount", "12345678901234567890.000000001"), Decimal("12345678901234567890.000000001"))
        self.assertEqual(handler.validate("amount", 0.1), Decimal("0.1"))
        self.assertEqual(handler.validate("amount", 2**70), Decimal(2**70))
        with self.assertRaises(InvalidFilterValue):
            handler.validate("amount", "12abc")
        with self.assertRaises(InvalidFilterValue):
            handler.validate("amount", "Infinity")

    def test_guid_renders_canonical_text(self):
        uid = uuid.uuid4()
        handler = strategy_for("guid")
        typed = handler.validate("owner", str(uid).upper())
        self.assertEqual(typed, uid)
        rendered = handler.render(typed)
        self.assertEqual(rendered.value, str(uid))
        self.assertEqual(str(rendered), str(uid))
        self.assertIsInstance(rendered.sql_type, Uuid)
        self.assertFalse(rendered.sql_type.as_uuid)

    def test_guid_invalid_raises(self):
        with self.assertRaises(InvalidFilterValue):
            strategy_for("guid").validate("owner", "not-a-uuid")
        with self.assertRaises(InvalidFilterValue):
            strategy_for("guid").validate("owner", 12)

    def test_dates_accept_iso_date_and_datetime(self):
        handler = strategy_for("date")
        self.assertEqual(handler.validate("due", "2026-02-26"), date(2026, 2, 26))
        self.assertEqual(handler.validate("due", "2026-02-26T13:45:00+03:00"), date(2026, 2, 26))
        with self.assertRaises(InvalidFilterValue):
            handler.validate("due", "26.02.2026")

    def test_datetime_date_only_is_midnight(self):
        value = strategy_for("datetime").validate("created_at", "2023-01-01")
        self.assertEqual(value, datetime(2023, 1, 1, 0, 0, 0))

    def test_datetime_truncates_to_seconds_and_normalizes_to_utc(self):
        value = strategy_for("datetime").validate("created_at", "2026-02-26T10:15:07.123456+03:00")
        self.assertEqual(value, datetime(2026, 2, 26, 7, 15, 7, tzinfo=timezone.utc))

    def test_datetime_invalid_raises(self):
        with self.assertRaises(InvalidFilterValue):
            strategy_for("datetime").validate("created_at", "yesterday")

    def test_text_and_set_pass_through(self):
        self.assertEqual(strategy_for("text").validate("name", "abc"), "abc")
        self.assertEqual(strategy_for("text").validate("name", 15), "15")
        self.assertEqual(strategy_for("set").validate("status", "Active"), "Active")
        with self.assertRaises(InvalidFilterValue):
            strategy_for("set").validate("status", {"a": 1})


class BlankPredicateTests(unittest.TestCase):
    def test_text_like_kinds_include_empty_string(self):
        self.assertEqual(strategy_for("text").blank_predicate("name"), "(name IS NULL OR name = '')")
        self.assertEqual(strategy_for("set").blank_predicate("status"), "(status IS NULL OR status = '')")

    def test_other_kinds_are_null_only(self):
        for kind in ("number", "bignumber", "guid", "date", "datetime", "boolean"):
            self.assertEqual(strategy_for(kind).blank_predicate("col"), "col IS NULL", kind)


if __name__ == "__main__":
    unittest.main()
