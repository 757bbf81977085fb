"""In-memory RxNav stand-in shared by the pipeline tests."""
from __future__ import annotations

from typing import Iterable, Optional, Union

from rxresolve.core.exceptions import TerminologyServiceError
from rxresolve.models.terminology import ApproximateMatch, ConceptProperties, StatusInfo


def concept(
    rxcui: str,
    name: str,
    tty: Optional[str],
    status: str = "Active",
    synonyms: Iterable[str] = (),
) -> ConceptProperties:
    return ConceptProperties(id=rxcui, name=name, type=tty, status=status, synonyms=list(synonyms))


class FakeRxNav:
    """
    Same five coroutines as RxNavClient, backed by dicts.

    ``statuses`` values may be a list: each get_status call consumes the head
    until one entry is left, which then repeats.  Ids without an explicit
    status report the status of their properties (or NotFound).
    ``failing`` holds (method, argument) pairs that raise.
    """

    def __init__(
        self,
        exact: Optional[dict[str, list[str]]] = None,
        approx: Optional[dict[str, list[ApproximateMatch]]] = None,
        properties: Optional[dict[str, ConceptProperties]] = None,
        statuses: Optional[dict[str, Union[StatusInfo, list[StatusInfo]]]] = None,
        ndcs: Optional[dict[str, int]] = None,
        failing: Optional[set[tuple[str, str]]] = None,
    ) -> None:
        self.exact = exact or {}
        self.approx = approx or {}
        self.properties = properties or {}
        self.statuses = statuses or {}
        self.ndcs = ndcs or {}
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []

    def _record(self, method: str, arg: str) -> None:
        self.calls.append((method, arg))
        if (method, arg) in self.failing:
            raise TerminologyServiceError(f"{method}({arg}) failed", status=500)

    def count(self, method: str, arg: Optional[str] = None) -> int:
        return sum(1 for m, a in self.calls if m == method and (arg is None or a == arg))

    async def find_exact(self, name: str) -> list[str]:
        self._record("find_exact", name)
        return list(self.exact.get(name, []))

    async def approximate_term(self, term: str) -> list[ApproximateMatch]:
        self._record("approximate_term", term)
        return list(self.approx.get(term, []))

    async def get_properties(self, rxcui: str) -> ConceptProperties:
        self._record("get_properties", rxcui)
        if rxcui not in self.properties:
            raise TerminologyServiceError(f"no properties for {rxcui}", status=404)
        return self.properties[rxcui]

    async def get_status(self, rxcui: str) -> StatusInfo:
        self._record("get_status", rxcui)
        entry = self.statuses.get(rxcui)
        if isinstance(entry, list):
            return entry.pop(0) if len(entry) > 1 else entry[0]
        if entry is not None:
            return entry
        props = self.properties.get(rxcui)
        return StatusInfo(status=props.status if props else "NotFound")

    async def get_ndc_count(self, rxcui: str) -> int:
        self._record("get_ndc_count", rxcui)
        return self.ndcs.get(rxcui, 0)
