from __future__ import annotations

from fakes import make_report
from summary_app.schemas import InsightMetrics, ThematicInsight
from summary_app.services.statistics import StatisticalAggregator, distribution, round_half_up


def _insight(theme: str, mentions: int) -> ThematicInsight:
    return ThematicInsight(
        theme=theme,
        description="",
        metrics=InsightMetrics(frequency=1, importance=0.0, consensus=0.1),
        mentions=mentions,
    )


def test_round_half_up() -> None:
    assert round_half_up(12.5) == 13
    assert round_half_up(2.5) == 3
    assert round_half_up(66.666) == 67
    assert round_half_up(33.333) == 33


def test_distribution_orders_by_count_then_name() -> None:
    entries = distribution(["b", "a", "b", "c"], 4)
    assert [(e.name, e.count, e.percentage) for e in entries] == [
        ("b", 2, 50),
        ("a", 1, 25),
        ("c", 1, 25),
    ]


def test_aggregate_totals_and_distributions() -> None:
    reports = [
        make_report("r1", age="30s", text="x" * 100),
        make_report("r2", age="30s", gender="male", text="x" * 200),
        make_report("r3", age=None, text="x" * 301),
    ]

    snapshot = StatisticalAggregator().aggregate(reports, [])

    assert snapshot.total_interviews == 3
    assert snapshot.total_input_length == 601
    assert snapshot.average_report_length == 200
    assert [(e.name, e.percentage) for e in snapshot.age_distribution] == [("30s", 67), ("unknown", 33)]
    assert [(e.name, e.count) for e in snapshot.gender_distribution] == [("female", 2), ("male", 1)]
    assert snapshot.percentage_tolerance == 1.5


def test_percentages_within_tolerance_of_100() -> None:
    reports = [make_report(f"r{i}", occupation=f"job{i}") for i in range(7)]

    snapshot = StatisticalAggregator().aggregate(reports, [])

    for entries in (snapshot.personas, snapshot.age_distribution, snapshot.gender_distribution):
        assert all(0 <= e.percentage <= 100 for e in entries)
        assert abs(sum(e.percentage for e in entries) - 100) <= snapshot.percentage_tolerance


def test_key_themes_top_ten_by_mentions() -> None:
    insights = [_insight(f"t{i:02d}", mentions=i) for i in range(12)]

    snapshot = StatisticalAggregator().aggregate([make_report("r1")], insights)

    assert len(snapshot.key_themes) == 10
    assert snapshot.key_themes[0].theme == "t11"
    assert snapshot.key_themes[-1].mentions == 2


def test_with_report_length_returns_copy() -> None:
    snapshot = StatisticalAggregator().aggregate([make_report("r1")], [])
    updated = StatisticalAggregator.with_report_length(snapshot, 1234)

    assert updated.total_report_length == 1234
    assert snapshot.total_report_length == 0
