from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, NamedTuple

from summary_app.exceptions import AggregationError
from summary_app.schemas import IndividualReport, PersonaProfile, UserInfo
from summary_app.services.extracted import MergedExtraction, flatten

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
SEPARATOR = "・"


class PersonaKey(NamedTuple):
    age: str
    gender: str
    occupation: str

    @property
    def label(self) -> str:
        return SEPARATOR.join(self)


def persona_key(user_info: UserInfo) -> PersonaKey:
    return PersonaKey(
        age=user_info.age or UNKNOWN,
        gender=user_info.gender or UNKNOWN,
        occupation=user_info.occupation or UNKNOWN,
    )


def group_reports(reports: Iterable[IndividualReport]) -> dict[PersonaKey, list[IndividualReport]]:
    groups: dict[PersonaKey, list[IndividualReport]] = {}
    for report in reports:
        groups.setdefault(persona_key(report.user_info), []).append(report)
    return groups


def persona_by_interview(reports: Iterable[IndividualReport]) -> dict[str, str]:
    return {r.interview_id: persona_key(r.user_info).label for r in reports}


def top_items(items: list[str], limit: int) -> list[str]:
    """Most frequent items first; ties keep first-seen order."""
    counts = Counter(items)
    first_seen = {item: pos for pos, item in reversed(list(enumerate(items)))}
    ranked = sorted(counts, key=lambda item: (-counts[item], first_seen[item]))
    return ranked[:limit]


class PersonaProfileBuilder:
    """Groups reports by persona key and assembles per-persona profiles."""

    def __init__(
        self,
        *,
        max_items: int = 5,
        max_decision_factors: int = 3,
        max_quotes: int = 5,
    ) -> None:
        self.max_items = max_items
        self.max_decision_factors = max_decision_factors
        self.max_quotes = max_quotes

    def build(self, reports: list[IndividualReport], merged: MergedExtraction) -> list[PersonaProfile]:
        by_field: dict[str, dict[str, list[str]]] = {}
        for key, values in merged.items():
            by_field.setdefault(key.interview_id, {}).setdefault(key.field, []).extend(flatten(values))

        profiles: list[tuple[PersonaKey, PersonaProfile]] = []
        for key, members in group_reports(reports).items():

            def collect(field_name: str) -> list[str]:
                out: list[str] = []
                for report in members:
                    out.extend(by_field.get(report.interview_id, {}).get(field_name, []))
                return out

            budgets = collect("budget")
            profiles.append(
                (
                    key,
                    PersonaProfile(
                        name=key.label,
                        count=len(members),
                        characteristics=top_items(collect("characteristics"), self.max_items),
                        primary_needs=top_items(collect("needs"), self.max_items),
                        pain_points=top_items(collect("pain_points"), self.max_items),
                        expectations=top_items(collect("expectations"), self.max_items),
                        budget=budgets[0] if budgets else "",
                        decision_factors=top_items(collect("decision_factors"), self.max_decision_factors),
                        quotes=top_items(collect("quotes"), self.max_quotes),
                    ),
                )
            )

        profiles.sort(key=lambda item: (-item[1].count, item[0]))
        return [profile for _, profile in profiles]


def reconcile_counts(profiles: list[PersonaProfile], total_reports: int) -> list[PersonaProfile]:
    """Force ``sum(count) == total_reports`` through the unknown bucket.

    A mismatch is a data-quality anomaly: it is logged as an AggregationError
    and corrected rather than aborting the run.
    """
    counted = sum(p.count for p in profiles)
    if counted == total_reports:
        return profiles

    error = AggregationError(f"persona counts sum to {counted}, expected {total_reports}")
    logger.error("%s; adjusting unknown bucket", error)

    unknown_label = PersonaKey(UNKNOWN, UNKNOWN, UNKNOWN).label
    adjusted = [p.model_copy() for p in profiles if p.name != unknown_label]
    unknown_count = total_reports - sum(p.count for p in adjusted)
    if unknown_count < 0:
        # Over-counted outside the unknown bucket: trim from the smallest groups.
        for profile in sorted(adjusted, key=lambda p: (p.count, p.name)):
            take = min(profile.count, -unknown_count)
            profile.count -= take
            unknown_count += take
            if unknown_count == 0:
                break
        adjusted = [p for p in adjusted if p.count > 0]
    if unknown_count > 0:
        existing = next((p for p in profiles if p.name == unknown_label), None)
        bucket = existing.model_copy(update={"count": unknown_count}) if existing else PersonaProfile(
            name=unknown_label, count=unknown_count
        )
        adjusted.append(bucket)
    adjusted.sort(key=lambda p: (-p.count, tuple(p.name.split(SEPARATOR))))
    return adjusted
