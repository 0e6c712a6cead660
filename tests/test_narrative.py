from __future__ import annotations

import json
import time
from unittest.mock import MagicMock

import pytest

from fakes import make_report
from summary_app.exceptions import CompletionRequestError, CompletionTimeoutError, SynthesisError
from summary_app.schemas import InsightMetrics, PersonaProfile, ThematicInsight
from summary_app.services.narrative import NarrativeSynthesizer, count_headings
from summary_app.services.retry import RetryPolicy
from summary_app.services.statistics import StatisticalAggregator


class ScriptedLLM:
    """Returns (or raises) the scripted outcomes in order."""

    def __init__(self, outcomes: list) -> None:
        self.outcomes = list(outcomes)
        self.prompts: list[str] = []

    def complete(self, prompt: str, **kwargs) -> str:
        self.prompts.append(prompt)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _inputs():
    reports = [make_report("r1"), make_report("r2", age="40s"), make_report("r3")]
    insights = [
        ThematicInsight(
            theme="Price transparency",
            description="2 of 3 interviews",
            evidence=["Clear price list is important"],
            personas={"30s・female・engineer": []},
            metrics=InsightMetrics(frequency=2, importance=0.5, consensus=2 / 3),
            mentions=2,
            quotes=["I want to see the price first"],
        )
    ]
    profiles = [PersonaProfile(name="30s・female・engineer", count=2), PersonaProfile(name="40s・female・engineer", count=1)]
    statistics = StatisticalAggregator().aggregate(reports, insights)
    return insights, profiles, statistics


def _synth(llm, **kwargs) -> NarrativeSynthesizer:
    kwargs.setdefault("retry_policy", RetryPolicy(max_retries=2, sleep=MagicMock()))
    return NarrativeSynthesizer(llm, **kwargs)


def _run(
    synth: NarrativeSynthesizer,
    *,
    target_length: int = 100,
    include_quotes: bool = True,
    deadline: float | None = None,
):
    insights, profiles, statistics = _inputs()
    return synth.synthesize(
        "Pricing",
        insights,
        profiles,
        statistics,
        target_length=target_length,
        target_sections=4,
        include_quotes=include_quotes,
        deadline=deadline,
    )


def test_short_draft_triggers_expansion_and_never_shrinks() -> None:
    llm = ScriptedLLM(["## Draft\nshort", "## More\n" + "x" * 200])

    result = _run(_synth(llm), target_length=100)

    assert result.expansion_count == 1
    assert result.draft_lengths[1] >= result.draft_lengths[0]
    assert len(result.text) >= result.draft_lengths[0]
    assert result.text.startswith("## Draft\nshort")
    assert len(llm.prompts) == 2
    assert json.loads(llm.prompts[1])["existing_headings"] == ["## Draft"]


def test_expansions_stop_at_budget() -> None:
    llm = ScriptedLLM(["## A\nshort", "more", "more", "more", "unused"])

    result = _run(_synth(llm, max_expansions=3), target_length=10000)

    assert result.expansion_count == 3
    assert len(llm.prompts) == 4
    assert result.draft_lengths == sorted(result.draft_lengths)


def test_failed_expansion_keeps_current_draft() -> None:
    llm = ScriptedLLM(["## Draft\nshort", CompletionRequestError("rejected", status_code=400)])

    result = _run(_synth(llm), target_length=100)

    assert result.expansion_count == 0
    assert result.text.startswith("## Draft\nshort")


def test_long_draft_skips_expansion() -> None:
    llm = ScriptedLLM(["## Draft\n" + "x" * 500])

    result = _run(_synth(llm), target_length=100)

    assert result.expansion_count == 0
    assert len(llm.prompts) == 1


def test_empty_draft_is_retried_then_raises_synthesis_error() -> None:
    llm = ScriptedLLM(["   ", "", CompletionTimeoutError("slow")])

    with pytest.raises(SynthesisError) as exc_info:
        _run(_synth(llm))

    assert exc_info.value.attempts == 3
    assert exc_info.value.phase == "synthesis"


def test_empty_then_valid_draft_succeeds() -> None:
    llm = ScriptedLLM(["", "## Draft\n" + "x" * 500])
    result = _run(_synth(llm))
    assert result.attempts == 2


def test_survey_overview_appended() -> None:
    llm = ScriptedLLM(["## Draft\n" + "x" * 500])

    result = _run(_synth(llm, language="Japanese"))

    assert "## 調査概要" in result.text
    assert "- 総インタビュー数: 3件" in result.text
    assert "- 40s: 1名 (33%)" in result.text


def test_prompt_limits_quotes_and_personas() -> None:
    llm = ScriptedLLM(["## Draft\n" + "x" * 500])

    _run(_synth(llm, max_personas=1), include_quotes=False)

    data = json.loads(llm.prompts[0])["data"]
    assert "quotes" not in data
    assert [p["name"] for p in data["personas"]] == ["30s・female・engineer"]
    assert data["themes"][0]["theme"] == "Price transparency"


def test_count_headings() -> None:
    assert count_headings("# A\ntext\n## B\n### C\n#nospace\n") == 3


def test_deadline_before_draft_raises_synthesis_error() -> None:
    llm = ScriptedLLM(["## Draft\n" + "x" * 500])

    with pytest.raises(SynthesisError):
        _run(_synth(llm), deadline=time.monotonic() - 1)

    assert llm.prompts == []


def test_deadline_during_expansion_keeps_draft() -> None:
    class SlowLLM(ScriptedLLM):
        def complete(self, prompt: str, **kwargs) -> str:
            time.sleep(0.2)
            return super().complete(prompt, **kwargs)

    llm = SlowLLM(["## Draft\nshort", "more", "more"])

    result = _run(_synth(llm, max_expansions=2), target_length=10000, deadline=time.monotonic() + 0.1)

    assert result.deadline_exceeded is True
    assert result.expansion_count == 0
    assert len(llm.prompts) == 1
    assert result.body == "## Draft\nshort"


def test_body_excludes_survey_overview() -> None:
    llm = ScriptedLLM(["## Draft\n" + "x" * 500])

    result = _run(_synth(llm, language="Japanese"))

    assert "調査概要" not in result.body
    assert result.text.startswith(result.body)
    assert count_headings(result.body) == 1
    assert result.deadline_exceeded is False


def test_prompt_asks_for_roadmap_and_risks() -> None:
    llm = ScriptedLLM(["## Draft\n" + "x" * 500])

    _run(_synth(llm))

    sections = json.loads(llm.prompts[0])["output_contract"]["sections"]
    assert "implementation roadmap" in sections
    assert "risks and mitigations" in sections
