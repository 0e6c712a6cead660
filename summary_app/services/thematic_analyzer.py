from __future__ import annotations

import logging
import re
import unicodedata
from collections import Counter
from dataclasses import dataclass, field
from difflib import SequenceMatcher

from summary_app.schemas import IndividualReport, InsightMetrics, ThematicInsight
from summary_app.services.extracted import MergedExtraction, flatten
from summary_app.services.persona_profiles import persona_by_interview, top_items

logger = logging.getLogger(__name__)

EVIDENCE_FIELDS = ("needs", "pain_points", "expectations", "quotes", "quantitative_mentions")

EMPHASIS_MARKERS = (
    "重要",
    "必要",
    "必須",
    "不可欠",
    "欠かせない",
    "絶対",
    "important",
    "essential",
    "critical",
    "crucial",
    "must",
    "necessary",
)

_TOKEN_SPLIT = re.compile(r"[\s、,，/・&]+")


def normalize_label(text: str) -> str:
    normalized = unicodedata.normalize("NFKC", text)
    return " ".join(normalized.split()).strip(" .。:：-").casefold()


def label_similarity(a: str, b: str) -> float:
    """Similarity of two normalized labels in [0, 1].

    Containment of one label in the other (both at least two characters)
    counts as an exact match; otherwise the SequenceMatcher ratio is used.
    """
    if a == b:
        return 1.0
    if min(len(a), len(b)) >= 2 and (a in b or b in a):
        return 1.0
    return SequenceMatcher(None, a, b).ratio()


@dataclass(slots=True)
class LabelMention:
    interview_id: str
    raw: str
    normalized: str


@dataclass(slots=True)
class ThemeCluster:
    seed: str
    mentions: list[LabelMention] = field(default_factory=list)

    def contributors(self) -> list[str]:
        return list(dict.fromkeys(m.interview_id for m in self.mentions))

    def terms(self) -> list[str]:
        terms: list[str] = []
        for mention in self.mentions:
            terms.append(mention.normalized)
            terms.extend(t for t in _TOKEN_SPLIT.split(mention.normalized) if len(t) >= 2)
        return list(dict.fromkeys(terms))


class ThemeClusterer:
    def __init__(self, match_threshold: float) -> None:
        self._match_threshold = match_threshold

    def assign(self, mention: LabelMention, clusters: list[ThemeCluster]) -> tuple[int, float]:
        best_idx = -1
        best_score = -1.0
        for idx, cluster in enumerate(clusters):
            score = label_similarity(mention.normalized, cluster.seed)
            if score > best_score:
                best_idx = idx
                best_score = score

        if best_idx >= 0 and best_score >= self._match_threshold:
            clusters[best_idx].mentions.append(mention)
            return best_idx, best_score

        clusters.append(ThemeCluster(seed=mention.normalized, mentions=[mention]))
        return len(clusters) - 1, best_score


class ThematicAnalyzer:
    """Deduplicates free-text theme labels into canonical insights."""

    def __init__(
        self,
        *,
        similarity_threshold: float = 0.8,
        max_quotes: int = 5,
        max_needs_per_persona: int = 3,
        emphasis_markers: tuple[str, ...] = EMPHASIS_MARKERS,
    ) -> None:
        self.clusterer = ThemeClusterer(match_threshold=similarity_threshold)
        self.max_quotes = max_quotes
        self.max_needs_per_persona = max_needs_per_persona
        self.emphasis_markers = tuple(m.casefold() for m in emphasis_markers)

    def cluster(self, reports: list[IndividualReport], merged: MergedExtraction) -> list[ThemeCluster]:
        known_ids = {r.interview_id for r in reports}
        clusters: list[ThemeCluster] = []
        for key, values in merged.items():
            if key.field != "themes" or key.interview_id not in known_ids:
                continue
            for raw in flatten(values):
                normalized = normalize_label(raw)
                if not normalized:
                    continue
                self.clusterer.assign(LabelMention(key.interview_id, raw.strip(), normalized), clusters)
        return clusters

    def analyze(self, reports: list[IndividualReport], merged: MergedExtraction) -> list[ThematicInsight]:
        total_reports = len(reports)
        if total_reports == 0:
            return []

        statements: dict[str, dict[str, list[str]]] = {}
        for key, values in merged.items():
            statements.setdefault(key.interview_id, {}).setdefault(key.field, []).extend(flatten(values))
        persona_of = persona_by_interview(reports)

        clusters = self.cluster(reports, merged)
        insights = []
        for cluster in clusters:
            insight = self._build_insight(cluster, statements, persona_of, total_reports)
            if insight is None:
                logger.debug("discarding theme cluster %r: no evidence", cluster.seed)
                continue
            insights.append(insight)

        insights.sort(key=lambda i: (-i.metrics.frequency, -i.metrics.importance, i.theme))
        logger.info("thematic analysis: clusters=%d insights=%d", len(clusters), len(insights))
        return insights

    def _mentions_theme(self, statement: str, terms: list[str]) -> bool:
        normalized = normalize_label(statement)
        return any(term in normalized for term in terms)

    def _is_emphatic(self, statement: str) -> bool:
        lowered = unicodedata.normalize("NFKC", statement).casefold()
        return any(marker in lowered for marker in self.emphasis_markers)

    def _build_insight(
        self,
        cluster: ThemeCluster,
        statements: dict[str, dict[str, list[str]]],
        persona_of: dict[str, str],
        total_reports: int,
    ) -> ThematicInsight | None:
        contributors = cluster.contributors()
        terms = cluster.terms()

        evidence: list[str] = []
        for interview_id in contributors:
            for field_name in EVIDENCE_FIELDS:
                for statement in statements.get(interview_id, {}).get(field_name, []):
                    if self._mentions_theme(statement, terms):
                        evidence.append(statement)
        evidence = list(dict.fromkeys(evidence))
        if not evidence:
            return None

        theme = top_items([m.raw for m in cluster.mentions], 1)[0]
        frequency = len(contributors)
        importance = sum(1 for e in evidence if self._is_emphatic(e)) / len(evidence)

        related_quotes: list[str] = []
        other_quotes: list[str] = []
        for interview_id in contributors:
            for quote in statements.get(interview_id, {}).get("quotes", []):
                target = related_quotes if self._mentions_theme(quote, terms) else other_quotes
                target.append(quote)
        quotes = list(dict.fromkeys(related_quotes + other_quotes))[: self.max_quotes]

        persona_counts = Counter(persona_of[i] for i in contributors)
        personas: dict[str, list[str]] = {}
        for persona in sorted(persona_counts, key=lambda p: (-persona_counts[p], p)):
            needs: list[str] = []
            for interview_id in contributors:
                if persona_of[interview_id] != persona:
                    continue
                needs.extend(
                    n for n in statements.get(interview_id, {}).get("needs", [])
                    if self._mentions_theme(n, terms)
                )
            personas[persona] = list(dict.fromkeys(needs))[: self.max_needs_per_persona]

        consensus = frequency / total_reports
        return ThematicInsight(
            theme=theme,
            description=self._describe(theme, frequency, total_reports, len(personas), len(evidence)),
            evidence=evidence,
            personas=personas,
            metrics=InsightMetrics(frequency=frequency, importance=importance, consensus=consensus),
            mentions=len(cluster.mentions),
            quotes=quotes,
            implications=self._implications(theme, consensus, importance, len(personas)),
        )

    @staticmethod
    def _describe(theme: str, frequency: int, total: int, persona_count: int, evidence_count: int) -> str:
        share = round(frequency / total * 100)
        return (
            f"{frequency} of {total} interviews ({share}%) raised \"{theme}\" "
            f"across {persona_count} persona group(s), with {evidence_count} supporting statement(s)."
        )

    @staticmethod
    def _implications(theme: str, consensus: float, importance: float, persona_count: int) -> list[str]:
        implications: list[str] = []
        if consensus >= 0.5:
            implications.append(f"{theme} is raised by a majority of interviewees and should be prioritised")
        if persona_count >= 3:
            implications.append(f"{theme} spans several personas; treat it as a core capability")
        if importance >= 0.5:
            implications.append(f"Interviewees describe {theme} as essential rather than optional")
        if not implications:
            implications.append(f"Validate {theme} in follow-up interviews")
        return implications
