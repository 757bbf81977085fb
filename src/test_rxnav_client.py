"""
Unit tests for the RxNav REST client.

HTTP is mocked at the aiohttp session level; no network access.

Run:
    python -m pytest src/test_rxnav_client.py -v
"""
from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, MagicMock

import aiohttp

from rxresolve.core.config import Settings
from rxresolve.core.exceptions import TerminologyServiceError
from rxresolve.services import rxnav_client
from rxresolve.services.rxnav_client import RxNavClient, split_synonyms


def _make_mock_response(payload) -> AsyncMock:
    mock_resp = AsyncMock()
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)
    mock_resp.raise_for_status = MagicMock()
    mock_resp.json = AsyncMock(return_value=payload)
    return mock_resp


def _client(*payloads) -> tuple[RxNavClient, MagicMock]:
    session = MagicMock()
    session.get = MagicMock(side_effect=[_make_mock_response(p) for p in payloads])
    return RxNavClient(session, Settings()), session


class ModuleTests(unittest.TestCase):
    def test_module_docstring(self):
        self.assertIn("RxNav REST API", rxnav_client.__doc__)


class SplitSynonymsTests(unittest.TestCase):
    def test_pipe_delimited(self):
        self.assertEqual(split_synonyms("A | B||C "), ["A", "B", "C"])

    def test_empty(self):
        self.assertEqual(split_synonyms(None), [])
        self.assertEqual(split_synonyms(""), [])


class FindExactTests(unittest.IsolatedAsyncioTestCase):
    async def test_returns_ids(self):
        client, session = _client({"idGroup": {"name": "x", "rxnormId": ["861007", 6809]}})
        self.assertEqual(await client.find_exact("metformin"), ["861007", "6809"])

    async def test_sends_name_and_search_params(self):
        client, session = _client({"idGroup": {}})
        await client.find_exact("metformin 500 MG")
        args, kwargs = session.get.call_args
        self.assertEqual(args[0], "https://rxnav.nlm.nih.gov/REST/rxcui.json")
        self.assertEqual(kwargs["params"], {"name": "metformin 500 MG", "search": "1"})

    async def test_missing_group_is_empty(self):
        client, _ = _client({})
        self.assertEqual(await client.find_exact("nothing"), [])


class ApproximateTermTests(unittest.IsolatedAsyncioTestCase):
    async def test_parses_candidates(self):
        payload = {
            "approximateGroup": {
                "candidate": [
                    {"rxcui": "861007", "rxaui": "123", "score": "12.5", "name": "metformin", "source": "RXNORM"},
                    {"rxaui": "999", "score": "3"},
                ]
            }
        }
        client, session = _client(payload)
        matches = await client.approximate_term("metformin")
        self.assertEqual(len(matches), 1)
        self.assertEqual(matches[0].id, "861007")
        self.assertEqual(matches[0].alt_id, "123")
        self.assertEqual(matches[0].score, 12.5)
        self.assertEqual(matches[0].source, "RXNORM")
        self.assertEqual(session.get.call_args[1]["params"]["maxEntries"], "20")

    async def test_single_object_candidate(self):
        client, _ = _client({"approximateGroup": {"candidate": {"rxcui": "1", "score": "1"}}})
        matches = await client.approximate_term("x")
        self.assertEqual([m.id for m in matches], ["1"])


class StatusTests(unittest.IsolatedAsyncioTestCase):
    async def test_active(self):
        client, _ = _client({"rxcuiStatus": {"status": "Active"}})
        status = await client.get_status("1")
        self.assertEqual(status.status, "Active")
        self.assertIsNone(status.successor_id)

    async def test_remapped_with_min_concept_group(self):
        client, _ = _client(
            {"rxcuiStatus": {"status": "Remapped", "minConceptGroup": {"minConcept": [{"rxcui": "42"}]}}}
        )
        status = await client.get_status("7")
        self.assertEqual(status.status, "Remapped")
        self.assertEqual(status.successor_id, "42")

    async def test_remapped_with_single_min_concept(self):
        client, _ = _client({"rxcuiStatus": {"status": "Remapped", "minConcept": {"rxcui": "43"}}})
        self.assertEqual((await client.get_status("7")).successor_id, "43")

    async def test_missing_status_is_not_found(self):
        client, _ = _client({})
        self.assertEqual((await client.get_status("7")).status, "NotFound")


class PropertiesTests(unittest.IsolatedAsyncioTestCase):
    async def test_combines_properties_and_status(self):
        client, session = _client(
            {"properties": {"rxcui": "861007", "name": "metformin hydrochloride 500 MG Oral Tablet",
                            "tty": "SCD", "synonym": "Metformin 500mg | Glucophage generic"}},
            {"rxcuiStatus": {"status": "Active"}},
        )
        props = await client.get_properties("861007")
        self.assertEqual(props.name, "metformin hydrochloride 500 MG Oral Tablet")
        self.assertEqual(props.type, "SCD")
        self.assertEqual(props.status, "Active")
        self.assertEqual(props.synonyms, ["Metformin 500mg", "Glucophage generic"])
        self.assertEqual(session.get.call_count, 2)

    async def test_missing_properties_raises(self):
        client, _ = _client({})
        with self.assertRaises(TerminologyServiceError):
            await client.get_properties("0")


class NdcCountTests(unittest.IsolatedAsyncioTestCase):
    async def test_ndc_list_shape(self):
        client, _ = _client({"ndcGroup": {"ndcList": {"ndc": ["a", "b", "c"]}}})
        self.assertEqual(await client.get_ndc_count("1"), 3)

    async def test_flat_ndc_shape(self):
        client, _ = _client({"ndcGroup": {"ndc": ["a"]}})
        self.assertEqual(await client.get_ndc_count("1"), 1)

    async def test_no_ndcs(self):
        client, _ = _client({"ndcGroup": {"ndcList": {}}})
        self.assertEqual(await client.get_ndc_count("1"), 0)


class ErrorTests(unittest.IsolatedAsyncioTestCase):
    async def test_http_error_becomes_terminology_error(self):
        resp = _make_mock_response({})
        resp.raise_for_status = MagicMock(
            side_effect=aiohttp.ClientResponseError(request_info=MagicMock(), history=(), status=503)
        )
        session = MagicMock()
        session.get = MagicMock(return_value=resp)
        client = RxNavClient(session, Settings())
        with self.assertRaises(TerminologyServiceError) as ctx:
            await client.find_exact("x")
        self.assertEqual(ctx.exception.status, 503)

    async def test_connection_error_becomes_terminology_error(self):
        session = MagicMock()
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("fail"))
        client = RxNavClient(session, Settings())
        with self.assertRaises(TerminologyServiceError):
            await client.approximate_term("x")

    async def test_non_object_payload_rejected(self):
        client, _ = _client(["unexpected"])
        with self.assertRaises(TerminologyServiceError):
            await client.find_exact("x")


if __name__ == "__main__":
    unittest.main()
