"""
Evidence contract construction.

Turns parsed spreadsheet columns into a bounded EvidenceContract: a few
truncated samples per column, stable candidate ids and explicit
constraints. The full document never reaches a provider.
"""

from collections.abc import Iterable, Sequence
from typing import Optional

import structlog

from .config.settings import settings
from .models import DEFAULT_CONSTRAINTS, CandidateChoice, EvidenceContract

logger = structlog.get_logger()

ELLIPSIS = "..."

# Letters only used in Persian
FARSI_LETTERS = frozenset("پچژگیک")
# Letters Persian replaces with its own forms
ARABIC_LETTERS = frozenset("ةيكى")


def truncate(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - len(ELLIPSIS)] + ELLIPSIS


def detect_language(samples: Iterable[str]) -> str:
    """
    Guess the language of header and sample text from character ranges.

    Returns:
        "en", "fa", "ar", "mixed", or "unknown" when no letters are found
    """
    latin = 0
    arabic_script = 0
    farsi_specific = 0
    arabic_specific = 0

    for sample in samples:
        for char in sample:
            code = ord(char)
            if ("a" <= char <= "z") or ("A" <= char <= "Z"):
                latin += 1
            elif 0x0600 <= code <= 0x06FF or 0x0750 <= code <= 0x077F:
                if not char.isalpha():
                    continue
                arabic_script += 1
                if char in FARSI_LETTERS:
                    farsi_specific += 1
                elif char in ARABIC_LETTERS or code >= 0x0750:
                    arabic_specific += 1

    total = latin + arabic_script
    if total == 0:
        return "unknown"

    if latin / total > 0.8:
        return "en"
    if arabic_script / total > 0.8:
        return "fa" if farsi_specific > arabic_specific else "ar"
    return "mixed"


class EvidenceContractBuilder:
    """
    Builds an EvidenceContract from column headers and values.

    Columns get ids ``col-0``, ``col-1``, ... in the order they are added.
    """

    def __init__(
        self,
        task_id: str,
        target_fields: Sequence[str],
        max_samples: Optional[int] = None,
        max_header_length: Optional[int] = None,
        max_sample_length: Optional[int] = None,
    ):
        self.task_id = task_id
        self.target_fields = tuple(target_fields)
        self.max_samples = max_samples or settings.max_sample_values
        self.max_header_length = max_header_length or settings.max_header_length
        self.max_sample_length = max_sample_length or settings.max_sample_length

        self._columns: list[tuple[str, list[str]]] = []
        self._restrictions: dict[str, tuple[str, ...]] = {}
        self._constraints: list[str] = []
        self._language: Optional[str] = None

    @staticmethod
    def column_id(index: int) -> str:
        return f"col-{index}"

    def add_column(self, header: str, values: Iterable[str]) -> "EvidenceContractBuilder":
        self._columns.append((header, list(values)))
        return self

    def add_columns(
        self, columns: Iterable[tuple[str, Iterable[str]]]
    ) -> "EvidenceContractBuilder":
        for header, values in columns:
            self.add_column(header, values)
        return self

    def restrict_field(
        self, field_name: str, candidate_ids: Iterable[str]
    ) -> "EvidenceContractBuilder":
        """Limit the candidates a provider may choose for one field."""
        self._restrictions[field_name] = tuple(candidate_ids)
        return self

    def add_constraints(self, constraints: Iterable[str]) -> "EvidenceContractBuilder":
        self._constraints.extend(constraints)
        return self

    def with_language(self, language: str) -> "EvidenceContractBuilder":
        self._language = language
        return self

    def build(self) -> EvidenceContract:
        """
        Build the contract.

        The language is detected from headers and samples unless set.

        Raises:
            pydantic.ValidationError: If the contract is invalid
        """
        candidates = []
        for index, (header, values) in enumerate(self._columns):
            samples = [v for v in values if v and v.strip()][: self.max_samples]
            candidates.append(
                CandidateChoice(
                    id=self.column_id(index),
                    label=truncate(header, self.max_header_length),
                    samples=tuple(truncate(s, self.max_sample_length) for s in samples),
                )
            )

        language = self._language
        if language is None:
            text = [c.label for c in candidates] + [s for c in candidates for s in c.samples]
            language = detect_language(text)

        contract = EvidenceContract(
            task_id=self.task_id,
            candidates=tuple(candidates),
            target_fields=self.target_fields,
            field_candidates=dict(self._restrictions),
            constraints=tuple(self._constraints) or DEFAULT_CONSTRAINTS,
            language=language,
        )

        logger.debug(
            "evidence_contract_built",
            task_id=self.task_id,
            candidates=len(candidates),
            target_fields=len(self.target_fields),
            language=language,
        )
        return contract
