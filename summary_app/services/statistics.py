from __future__ import annotations

import math
from collections import Counter
from typing import Iterable

from summary_app.schemas import (
    DistributionEntry,
    IndividualReport,
    StatisticalSnapshot,
    ThematicInsight,
    ThemeMention,
)
from summary_app.services.persona_profiles import UNKNOWN, persona_key


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def distribution(labels: Iterable[str], total: int) -> list[DistributionEntry]:
    """Count labels into buckets ordered by count desc, then name.

    Percentages are rounded independently and never re-normalized, so their
    sum may drift from 100 by up to 0.5 per bucket.
    """
    counts = Counter(labels)
    entries = []
    for name in sorted(counts, key=lambda n: (-counts[n], n)):
        percentage = round_half_up(counts[name] / total * 100) if total else 0
        entries.append(DistributionEntry(name=name, count=counts[name], percentage=percentage))
    return entries


class StatisticalAggregator:
    def __init__(self, *, max_themes: int = 10) -> None:
        self.max_themes = max_themes

    def aggregate(
        self,
        reports: list[IndividualReport],
        insights: list[ThematicInsight],
    ) -> StatisticalSnapshot:
        total = len(reports)
        total_length = sum(len(r.report) for r in reports)

        personas = distribution((persona_key(r.user_info).label for r in reports), total)
        ages = distribution((r.user_info.age or UNKNOWN for r in reports), total)
        genders = distribution((r.user_info.gender or UNKNOWN for r in reports), total)

        ranked = sorted(insights, key=lambda i: (-i.mentions, i.theme))[: self.max_themes]
        bucket_count = max(len(personas), len(ages), len(genders))

        return StatisticalSnapshot(
            total_interviews=total,
            total_input_length=total_length,
            average_report_length=round_half_up(total_length / total) if total else 0,
            personas=personas,
            age_distribution=ages,
            gender_distribution=genders,
            key_themes=[ThemeMention(theme=i.theme, mentions=i.mentions) for i in ranked],
            percentage_tolerance=0.5 * bucket_count,
        )

    @staticmethod
    def with_report_length(snapshot: StatisticalSnapshot, report_length: int) -> StatisticalSnapshot:
        return snapshot.model_copy(update={"total_report_length": report_length})
