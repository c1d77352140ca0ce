import os
import unittest
from datetime import datetime
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import Column, DateTime, Integer, MetaData, Numeric, String, Table, create_engine, insert
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure settings can be initialized in test environments
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from app.core.config import settings
from app.db.session import get_db
from app.main import app
from app.services.grid import service as grid_service
from app.schemas.grid import GridRowsRequest
from app.services.grid.assembler import QueryAssembler
from app.services.grid.errors import ExecutionError
from app.services.grid.execution import SqlAlchemyExecutor
from app.services.grid.sources import GridSource, source_from_table


class GridApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)
        metadata = MetaData()
        cls.tickets = Table(
            "tickets",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("title", String(100)),
            Column("status", String(20)),
            Column("created_at", DateTime),
            Column("amount", Numeric(12, 2)),
        )
        metadata.create_all(cls.engine)
        statuses = ["Active", "Pending", "Closed"]
        with cls.engine.begin() as conn:
            conn.execute(
                insert(cls.tickets),
                [
                    {
                        "id": i,
                        "title": f"Ticket {i}" if i % 10 else "",
                        "status": statuses[i % 3],
                        "created_at": datetime(2023, 1, 1 + (i % 28), 12, 0, 0),
                        "amount": i * 10,
                    }
                    for i in range(1, 121)
                ],
            )

    @classmethod
    def tearDownClass(cls):
        cls.engine.dispose()

    def setUp(self):
        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        grid_service.reset_grid_state_for_tests()
        registry = grid_service.get_source_registry()
        registry.register(source_from_table(self.tickets))
        registry.register(
            GridSource(
                name="ticket_feed",
                table="tickets",
                key_column="id",
                columns={"createdAt": "created_at"},
                projection=("id", "title", "createdAt"),
            )
        )
        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()
        grid_service.reset_grid_state_for_tests()

    def _rows(self, source: str, payload: dict):
        return self.client.post(f"/api/grid/{source}/rows", json=payload)

    def test_first_page_with_exact_total(self):
        response = self._rows("tickets", {"startRow": 0, "endRow": 25})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([row["id"] for row in body["rows"]], list(range(1, 26)))
        self.assertEqual(body["total"], 120)
        self.assertTrue(body["total_exact"])
        self.assertEqual(body["start_row"], 0)
        self.assertEqual(body["end_row"], 25)

    def test_filters_sort_and_serialization(self):
        response = self._rows(
            "tickets",
            {
                "startRow": 0,
                "endRow": 5,
                "filters": {"status": {"dataKind": "set", "operator": "in", "values": ["Active", "Pending"]}},
                "sort": [{"column": "amount", "direction": "desc"}],
            },
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 80)
        self.assertEqual([row["id"] for row in body["rows"]], [120, 118, 117, 115, 114])
        self.assertTrue(all(row["status"] in ("Active", "Pending") for row in body["rows"]))
        self.assertEqual(body["rows"][0]["amount"], 1200)

    def test_datetime_filter_on_mapped_column(self):
        response = self._rows(
            "ticket_feed",
            {
                "endRow": 500,
                "filters": {"createdAt": {"dataKind": "datetime", "operator": "lessThan", "value": "2023-01-03"}},
            },
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(sorted(body["rows"][0]), ["createdAt", "id", "title"])
        # January 1st and 2nd: i % 28 is 0 or 1.
        self.assertEqual([row["id"] for row in body["rows"]], [1, 28, 29, 56, 57, 84, 85, 112, 113])
        self.assertEqual(body["total"], 9)

    def test_text_blank_matches_empty_strings(self):
        response = self._rows("tickets", {"endRow": 500, "filters": {"title": {"dataKind": "text", "operator": "blank"}}})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["id"] for row in response.json()["rows"]], [10, 20, 30, 40, 50, 60, 70, 80, 90, 100, 110, 120])

    def test_count_mode_none_and_approximate_fallback(self):
        response = self._rows("tickets", {"endRow": 1, "countMode": "none"})
        self.assertIsNone(response.json()["total"])
        self.assertIsNone(response.json()["total_exact"])

        # SQLite has no table statistics, so the approximate path falls back.
        response = self._rows("tickets", {"endRow": 1, "countMode": "approximate"})
        self.assertEqual(response.json()["total"], 120)
        self.assertTrue(response.json()["total_exact"])

    def test_malformed_filter_is_400(self):
        response = self._rows(
            "tickets", {"filters": {"amount": {"dataKind": "number", "operator": "inRange", "value": 10}}}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("amount", response.json()["detail"])

    def test_invalid_value_unknown_kind_and_unknown_column_are_400(self):
        payloads = [
            {"filters": {"created_at": {"dataKind": "datetime", "operator": "equals", "value": "soon"}}},
            {"filters": {"status": {"dataKind": "enum", "operator": "equals", "value": "Active"}}},
            {"filters": {"secret": {"dataKind": "text", "operator": "equals", "value": "x"}}},
            {"sort": [{"column": "title desc; --", "direction": "asc"}]},
        ]
        for payload in payloads:
            with self.subTest(payload=payload):
                self.assertEqual(self._rows("tickets", payload).status_code, 400)

    def test_bad_window_is_422_and_oversized_page_is_400(self):
        self.assertEqual(self._rows("tickets", {"startRow": 10, "endRow": 5}).status_code, 422)
        self.assertEqual(self._rows("tickets", {"startRow": -1, "endRow": 5}).status_code, 422)
        too_big = self._rows("tickets", {"startRow": 0, "endRow": settings.GRID_MAX_PAGE_SIZE + 1})
        self.assertEqual(too_big.status_code, 400)

    def test_unknown_source_is_404(self):
        self.assertEqual(self._rows("nope", {}).status_code, 404)
        self.assertEqual(self.client.get("/api/grid/nope/columns").status_code, 404)

    def test_execution_failure_is_502(self):
        with patch.object(SqlAlchemyExecutor, "fetch_rows", side_effect=ExecutionError("down")):
            response = self._rows("tickets", {})
        self.assertEqual(response.status_code, 502)

    def test_invalid_request_runs_no_query(self):
        with patch.object(SqlAlchemyExecutor, "fetch_rows") as fetch_rows, patch.object(
            SqlAlchemyExecutor, "fetch_scalar"
        ) as fetch_scalar:
            response = self._rows(
                "tickets",
                {
                    "filters": {
                        "status": {"dataKind": "set", "operator": "equals", "value": "Active"},
                        "amount": {"dataKind": "number", "operator": "equals", "value": "many"},
                    }
                },
            )
        self.assertEqual(response.status_code, 400)
        fetch_rows.assert_not_called()
        fetch_scalar.assert_not_called()

    def test_sources_and_columns_meta(self):
        self.assertEqual(self.client.get("/api/grid/sources").json(), {"sources": ["ticket_feed", "tickets"]})
        meta = self.client.get("/api/grid/tickets/columns").json()
        self.assertEqual(meta["key"], "id")
        kinds = {column["name"]: column["kind"] for column in meta["columns"]}
        self.assertEqual(kinds["created_at"], "datetime")
        self.assertEqual(kinds["amount"], "bignumber")

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class _RecordingExecutor:
    def __init__(self):
        self.scalar_queries = []

    def fetch_rows(self, query):
        return [{"id": 1}]

    def fetch_scalar(self, query):
        self.scalar_queries.append(query)
        return 1


class FetchPageTests(unittest.TestCase):
    def test_count_statement_is_compiled_once(self):
        source = GridSource(name="orders", table="orders", key_column="id")
        request = GridRowsRequest.model_validate(
            {
                "countMode": "exact",
                "filters": {"status": {"dataKind": "set", "operator": "equals", "value": "Active"}},
            }
        )
        executor = _RecordingExecutor()
        with patch.object(
            QueryAssembler, "compile_count", autospec=True, side_effect=QueryAssembler.compile_count
        ) as compile_count:
            page = grid_service.fetch_page(source, request, executor=executor)
        self.assertEqual(compile_count.call_count, 1)
        self.assertEqual(executor.scalar_queries[0].text, "SELECT COUNT(*) FROM orders WHERE status = :p1")
        self.assertEqual(page["total"], 1)
        self.assertEqual(page["end_row"], 1)


if __name__ == "__main__":
    unittest.main()
