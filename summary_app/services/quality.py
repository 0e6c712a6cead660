from __future__ import annotations

import re
from dataclasses import dataclass

from summary_app.schemas import Feature, QualityBreakdown
from summary_app.services.narrative import count_headings

_NUMBER = re.compile(r"\d+(?:[.,]\d+)*")


@dataclass(slots=True, frozen=True)
class QualityScore:
    length: float
    structure: float
    specificity: float
    composite: int

    def as_breakdown(self) -> QualityBreakdown:
        return QualityBreakdown(
            length=self.length,
            structure=self.structure,
            specificity=self.specificity,
            composite=self.composite,
        )


def score_quality(
    narrative: str,
    features: list[Feature],
    target_length: int,
    target_sections: int,
) -> QualityScore:
    """Deterministic 0-100 quality score of a narrative and its features.

    Equal-weight mean of length adequacy, heading structure and specificity.
    Specificity averages numeric density with the share of feature personas
    named in the narrative; with no feature personas it is the numeric score
    alone. Depends on its arguments only.
    """
    length_score = min(100.0, len(narrative) / target_length * 100) if target_length > 0 else 0.0
    structure_score = (
        min(100.0, count_headings(narrative) / target_sections * 100) if target_sections > 0 else 0.0
    )

    numbers = len(_NUMBER.findall(narrative))
    per_thousand = numbers / len(narrative) * 1000 if narrative else 0.0
    numeric_score = min(100.0, per_thousand * 10)

    personas = list(dict.fromkeys(p for f in features for p in f.personas))
    if personas:
        coverage = sum(1 for p in personas if p in narrative) / len(personas) * 100
        specificity_score = (numeric_score + coverage) / 2
    else:
        specificity_score = numeric_score

    composite = round((length_score + structure_score + specificity_score) / 3)
    return QualityScore(
        length=round(length_score, 2),
        structure=round(structure_score, 2),
        specificity=round(specificity_score, 2),
        composite=max(0, min(100, int(composite))),
    )
