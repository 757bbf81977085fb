"""
End-to-end tests for resolve_medication against an in-memory RxNav.

Run:
    python -m pytest src/test_resolution.py -v
"""
from __future__ import annotations

import unittest

from rxnav_fakes import FakeRxNav, concept
from rxresolve.core.exceptions import EmbeddingServiceError
from rxresolve.models.medication import BestMatchResult
from rxresolve.models.terminology import ApproximateMatch, StatusInfo
from rxresolve.services.resolution import resolve_medication

METFORMIN_500 = "metformin hydrochloride 500 MG Oral Tablet"
METFORMIN_1000 = "metformin hydrochloride 1000 MG Oral Tablet"
LIPITOR_20 = "atorvastatin 20 MG Oral Tablet [Lipitor]"
ATORVASTATIN_20 = "atorvastatin 20 MG Oral Tablet"


def _metformin_rxnav(**overrides) -> FakeRxNav:
    kwargs = dict(
        exact={"metformin 500 MG Oral Tablet": ["861007"], "metformin": ["6809"]},
        approx={"metformin 500 MG": [ApproximateMatch(id="861010", score=7.0, source="RXNORM")]},
        properties={
            "861007": concept("861007", METFORMIN_500, "SCD"),
            "861010": concept("861010", METFORMIN_1000, "SCD"),
            "6809": concept("6809", "metformin", "IN"),
        },
        ndcs={"861007": 5},
    )
    kwargs.update(overrides)
    return FakeRxNav(**kwargs)


def _atorvastatin_rxnav(**overrides) -> FakeRxNav:
    kwargs = dict(
        exact={"atorvastatin 20 MG Oral Tablet": ["617318", "617310"]},
        properties={
            "617318": concept("617318", LIPITOR_20, "SBD"),
            "617310": concept("617310", ATORVASTATIN_20, "SCD"),
        },
    )
    kwargs.update(overrides)
    return FakeRxNav(**kwargs)


class ReorderingMatcher:
    def __init__(self, pick: str = "", error: Exception = None):
        self.pick = pick
        self.error = error
        self.calls: list[list[str]] = []

    async def best_match(self, input_text, candidate_names, **weights):
        self.calls.append(list(candidate_names))
        if self.error:
            raise self.error
        return BestMatchResult(candidate=self.pick, similarity_score=0.9, reason="stub")


class ResolveMedicationTests(unittest.IsolatedAsyncioTestCase):
    async def test_metformin_resolves_to_scd(self):
        fake = _metformin_rxnav()
        resolution = await resolve_medication("metformin 500 mg oral tablet", fake)

        self.assertEqual(resolution.final.id, "861007")
        self.assertEqual(resolution.final.type, "SCD")
        self.assertEqual(resolution.final.status, "Active")
        self.assertTrue(resolution.final.verification.status_checked)
        self.assertTrue(resolution.final.verification.market_found)
        self.assertEqual(resolution.group_id.ingredient_id, "6809")
        self.assertEqual(resolution.differences, ["—"])
        self.assertEqual(resolution.input, "metformin 500 mg oral tablet")
        self.assertEqual(resolution.normalized, "metformin 500 MG oral tablet")
        self.assertEqual({c.id for c in resolution.candidates}, {"861007", "861010"})

    async def test_terms_tried_in_order(self):
        fake = _metformin_rxnav()
        await resolve_medication("metformin 500 mg oral tablet", fake)
        exact_terms = [arg for method, arg in fake.calls if method == "find_exact"]
        self.assertEqual(
            exact_terms,
            [
                "metformin 500 MG Oral Tablet",
                "metformin 500 MG Tablet",
                "metformin 500 MG Tab",
                "metformin 500 MG",
                "metformin",
            ],
        )

    async def test_attempts_log_narrates_pipeline(self):
        resolution = await resolve_medication("metformin 500 mg oral tablet", _metformin_rxnav())
        log = resolution.attempts_log
        self.assertEqual(log[0], 'Starting resolution for: "metformin 500 mg oral tablet"')
        self.assertIn("Filtered to 1 of 2 candidates", log)
        self.assertIn("Selected winner: 861007 (SCD) - " + METFORMIN_500, log)

    async def test_top_candidate_failing_recheck_is_skipped(self):
        fake = _atorvastatin_rxnav(
            statuses={"617318": [StatusInfo("Active"), StatusInfo("NotFound")]},
        )
        resolution = await resolve_medication("atorvastatin 20 mg oral tablet", fake)
        self.assertEqual(resolution.final.id, "617310")
        self.assertIn("Candidate 617318 failed verification", resolution.attempts_log)

    async def test_no_candidates(self):
        resolution = await resolve_medication("unobtainium 5 mg tablet", FakeRxNav())
        self.assertIsNone(resolution.final)
        self.assertEqual(resolution.differences, ["No match found"])
        self.assertIsNone(resolution.group_id.ingredient_id)
        self.assertEqual(resolution.candidates, [])

    async def test_lookup_failures_are_recorded_not_raised(self):
        fake = _metformin_rxnav(
            failing={("find_exact", "metformin 500 MG Oral Tablet"), ("approximate_term", "metformin")},
        )
        resolution = await resolve_medication("metformin 500 mg oral tablet", fake)
        self.assertIsNone(resolution.final)
        self.assertEqual(resolution.group_id.ingredient_id, "6809")
        self.assertTrue(any(line.startswith("Exact search error") for line in resolution.attempts_log))
        self.assertTrue(any(line.startswith("Approximate search error") for line in resolution.attempts_log))

    async def test_empty_input(self):
        resolution = await resolve_medication("", FakeRxNav())
        self.assertIsNone(resolution.final)
        self.assertEqual(resolution.differences, ["No match found"])


class HybridOrderingTests(unittest.IsolatedAsyncioTestCase):
    async def test_matcher_pick_is_verified_first(self):
        matcher = ReorderingMatcher(pick=ATORVASTATIN_20)
        resolution = await resolve_medication("atorvastatin 20 mg oral tablet", _atorvastatin_rxnav(), matcher)
        self.assertEqual(resolution.final.id, "617310")
        self.assertEqual(matcher.calls, [[LIPITOR_20, ATORVASTATIN_20]])
        self.assertIn("Verification order: 617310 promoted by hybrid match (0.900)", resolution.attempts_log)

    async def test_embedding_failure_keeps_score_order(self):
        matcher = ReorderingMatcher(error=EmbeddingServiceError("provider down"))
        resolution = await resolve_medication("atorvastatin 20 mg oral tablet", _atorvastatin_rxnav(), matcher)
        self.assertEqual(resolution.final.id, "617318")
        self.assertTrue(
            any(line.startswith("Hybrid match unavailable") for line in resolution.attempts_log)
        )

    async def test_single_candidate_skips_matcher(self):
        matcher = ReorderingMatcher(pick="anything")
        await resolve_medication("metformin 500 mg oral tablet", _metformin_rxnav(), matcher)
        self.assertEqual(matcher.calls, [])


if __name__ == "__main__":
    unittest.main()
