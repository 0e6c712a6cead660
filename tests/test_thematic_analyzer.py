from __future__ import annotations

import pytest

from fakes import make_report
from summary_app.services.extracted import ExtractionKey, ListValue
from summary_app.services.thematic_analyzer import (
    LabelMention,
    ThematicAnalyzer,
    ThemeClusterer,
    label_similarity,
    normalize_label,
)


def test_normalize_label_folds_width_case_and_spaces() -> None:
    assert normalize_label("  ＡＩ　 Support  ") == "ai support"


@pytest.mark.parametrize(
    ("a", "b", "joins"),
    [
        ("料金", "料金の透明性", True),
        ("onboarding flow", "onboarding flows", True),
        ("support", "export", False),
        ("a", "ab", False),
    ],
)
def test_similarity_threshold_examples(a: str, b: str, joins: bool) -> None:
    assert (label_similarity(a, b) >= 0.8) is joins


def test_clusterer_joins_best_match_or_opens_new_cluster() -> None:
    clusterer = ThemeClusterer(match_threshold=0.8)
    clusters = []

    clusterer.assign(LabelMention("r1", "Onboarding flow", "onboarding flow"), clusters)
    idx, score = clusterer.assign(LabelMention("r2", "Onboarding flows", "onboarding flows"), clusters)
    new_idx, _ = clusterer.assign(LabelMention("r3", "Export", "export"), clusters)

    assert idx == 0
    assert score > 0.9
    assert new_idx == 1
    assert clusters[0].contributors() == ["r1", "r2"]


def _fixture():
    reports = [
        make_report("r1"),
        make_report("r2"),
        make_report("r3", occupation="designer"),
        make_report("r4", occupation="manager"),
    ]
    merged = {
        ExtractionKey("r1", "themes"): [ListValue(("Price transparency",))],
        ExtractionKey("r1", "needs"): [ListValue(("Clear price list is important",))],
        ExtractionKey("r1", "quotes"): [ListValue(("I want to see the price first",))],
        ExtractionKey("r2", "themes"): [ListValue(("price transparency ",))],
        ExtractionKey("r2", "pain_points"): [ListValue(("Hidden price changes",))],
        ExtractionKey("r2", "quotes"): [ListValue(("Unrelated remark",))],
        ExtractionKey("r3", "themes"): [ListValue(("Support",))],
        ExtractionKey("r3", "needs"): [ListValue(("Chat support in the evening",))],
        ExtractionKey("r4", "themes"): [ListValue(("Export",))],
    }
    return reports, merged


def test_analyze_clusters_variants_and_computes_metrics() -> None:
    reports, merged = _fixture()

    insights = ThematicAnalyzer().analyze(reports, merged)

    assert [i.theme for i in insights] == ["Price transparency", "Support"]
    price = insights[0]
    assert price.metrics.frequency == 2
    assert price.metrics.consensus == 2 / 4
    assert price.metrics.importance == pytest.approx(1 / 3)
    assert price.mentions == 2
    assert price.evidence == [
        "Clear price list is important",
        "I want to see the price first",
        "Hidden price changes",
    ]
    assert price.quotes == ["I want to see the price first", "Unrelated remark"]
    assert price.personas == {"30s・female・engineer": ["Clear price list is important"]}
    assert any("majority" in line for line in price.implications)


def test_zero_evidence_clusters_are_discarded() -> None:
    reports, merged = _fixture()
    themes = [i.theme for i in ThematicAnalyzer().analyze(reports, merged)]
    assert "Export" not in themes


def test_metrics_stay_within_bounds() -> None:
    reports, merged = _fixture()
    for insight in ThematicAnalyzer().analyze(reports, merged):
        assert 0 <= insight.metrics.frequency <= len(reports)
        assert insight.metrics.consensus == insight.metrics.frequency / len(reports)
        assert 0.0 <= insight.metrics.importance <= 1.0


def test_quotes_capped() -> None:
    reports = [make_report("r1"), make_report("r2"), make_report("r3")]
    quotes = tuple(f"price quote {n}" for n in range(8))
    merged = {
        ExtractionKey("r1", "themes"): [ListValue(("price",))],
        ExtractionKey("r1", "quotes"): [ListValue(quotes)],
    }

    insight = ThematicAnalyzer(max_quotes=5).analyze(reports, merged)[0]

    assert insight.quotes == list(quotes[:5])


def test_ignores_themes_from_unknown_interviews() -> None:
    reports = [make_report("r1")]
    merged = {
        ExtractionKey("ghost", "themes"): [ListValue(("price",))],
        ExtractionKey("ghost", "needs"): [ListValue(("price matters",))],
    }
    assert ThematicAnalyzer().analyze(reports, merged) == []
