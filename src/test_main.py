"""HTTP surface tests: health, report export and the batchJob GraphQL query."""
from __future__ import annotations

import csv
import io
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi.testclient import TestClient

from rxresolve import main
from rxresolve.core.config import Settings
from rxresolve.graphql import schema as graphql_schema
from rxresolve.services.batch_service import save_report

ROW = {
    "input": "metformin 500mg tablet", "normalized": "metformin 500 MG tablet",
    "rxcui": "861007", "type": "SCD", "resolved_name": "metformin hydrochloride 500 MG Oral Tablet",
    "status": "Active", "market_found": True, "ingredient_id": "6809",
    "differences": ["—"], "candidates": 1,
}


class ApiTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.settings = Settings(report_dir=Path(self._tmp.name) / "reports")
        for target in (main, graphql_schema):
            patcher = patch.object(target, "get_settings", return_value=self.settings)
            patcher.start()
            self.addCleanup(patcher.stop)
        self.client = TestClient(main.app)

    def tearDown(self):
        self._tmp.cleanup()

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_export_unknown_job(self):
        self.assertEqual(self.client.get("/batch/nope/export").status_code, 404)

    def test_export_bad_format(self):
        self.assertEqual(self.client.get("/batch/nope/export?format=pdf").status_code, 400)

    def test_export_pending_job(self):
        save_report("job-1", {"status": "RUNNING"}, self.settings.report_dir)
        self.assertEqual(self.client.get("/batch/job-1/export").status_code, 409)

    def test_export_csv(self):
        save_report("job-2", {"status": "COMPLETED", "rows": [ROW], "summary": {}}, self.settings.report_dir)
        response = self.client.get("/batch/job-2/export?format=csv")
        self.assertEqual(response.status_code, 200)
        self.assertIn("attachment;", response.headers["content-disposition"])
        records = list(csv.DictReader(io.StringIO(response.text)))
        self.assertEqual(records[0]["rxcui"], "861007")

    def test_export_excel(self):
        save_report("job-3", {"status": "COMPLETED", "rows": [ROW], "summary": {}}, self.settings.report_dir)
        response = self.client.get("/batch/job-3/export?format=excel")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.content.startswith(b"PK"))
        self.assertIn(".xlsx", response.headers["content-disposition"])

    def test_batch_job_query(self):
        summary = {"total": 2, "resolved": 1, "unresolved": 1, "errors": 0, "resolved_rate": 0.5}
        save_report("job-4", {"status": "COMPLETED", "rows": [], "summary": summary}, self.settings.report_dir)
        response = self.client.post(
            "/graphql",
            json={"query": '{ batchJob(id: "job-4") { id status total resolved unresolved } }'},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json()["data"]["batchJob"],
            {"id": "job-4", "status": "COMPLETED", "total": 2, "resolved": 1, "unresolved": 1},
        )

    def test_batch_job_query_unknown(self):
        response = self.client.post("/graphql", json={"query": '{ batchJob(id: "zzz") { status } }'})
        self.assertIsNone(response.json()["data"]["batchJob"])


class SafeFilenameTests(unittest.TestCase):
    def test_path_components_removed(self):
        self.assertEqual(graphql_schema._safe_filename("../../etc/list v2.csv"), "list_v2.csv")

    def test_default_name(self):
        self.assertEqual(graphql_schema._safe_filename(None), "medications.csv")


if __name__ == "__main__":
    unittest.main()
