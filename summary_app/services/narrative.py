from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from summary_app.exceptions import (
    CompletionError,
    DeadlineExceededError,
    EmptyCompletionError,
    SynthesisError,
)
from summary_app.schemas import (
    DistributionEntry,
    PersonaProfile,
    StatisticalSnapshot,
    ThematicInsight,
)
from summary_app.services.batch_extractor import CompletionClient
from summary_app.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

_HEADING = re.compile(r"^#{1,6}\s+\S", re.MULTILINE)

# Tail of the current draft handed to each expansion call for continuity.
EXPANSION_CONTEXT_CHARS = 2000

_OVERVIEW_LABELS = {
    "Japanese": {
        "title": "調査概要",
        "scale": "調査規模",
        "interviews": "総インタビュー数",
        "average": "平均レポート長",
        "personas": "ペルソナ分布",
        "ages": "年齢層分布",
        "genders": "性別分布",
        "people": "名",
        "items": "件",
        "chars": "文字",
    },
    "English": {
        "title": "Survey overview",
        "scale": "Scale",
        "interviews": "Total interviews",
        "average": "Average report length",
        "personas": "Persona distribution",
        "ages": "Age distribution",
        "genders": "Gender distribution",
        "people": "",
        "items": "",
        "chars": " chars",
    },
}


def count_headings(text: str) -> int:
    return len(_HEADING.findall(text))


@dataclass(slots=True)
class NarrativeResult:
    text: str
    body: str = ""
    expansion_count: int = 0
    draft_lengths: list[int] = field(default_factory=list)
    attempts: int = 1
    deadline_exceeded: bool = False


class NarrativeSynthesizer:
    """Writes the markdown report from aggregated findings.

    One drafting call, then up to ``max_expansions`` calls that append new
    sections while the draft is shorter than the target. Each recorded draft
    length is at least the previous one; a failed expansion ends expansion and
    keeps the draft so far. A deterministic survey overview is appended last;
    ``body`` holds the model-written text without it.

    With a ``deadline`` (a ``time.monotonic()`` value) no call starts after it.
    Missing the deadline before a draft exists is a ``SynthesisError``; missing
    it while expanding keeps the draft and sets ``deadline_exceeded``.
    """

    def __init__(
        self,
        llm: CompletionClient,
        *,
        retry_policy: RetryPolicy | None = None,
        max_expansions: int = 3,
        language: str = "Japanese",
        max_personas: int = 5,
        max_themes: int = 8,
        max_quotes: int = 10,
        timeout_ms: int | None = None,
    ) -> None:
        self.llm = llm
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_expansions = max_expansions
        self.language = language
        self.max_personas = max_personas
        self.max_themes = max_themes
        self.max_quotes = max_quotes
        self.timeout_ms = timeout_ms

    def synthesize(
        self,
        theme_name: str,
        insights: list[ThematicInsight],
        profiles: list[PersonaProfile],
        statistics: StatisticalSnapshot,
        *,
        target_length: int,
        target_sections: int,
        include_quotes: bool = True,
        model_name: str | None = None,
        deadline: float | None = None,
    ) -> NarrativeResult:
        data = self._prompt_data(theme_name, insights, profiles, statistics, include_quotes)
        system_prompt = self._build_system_prompt()
        user_prompt = self._build_user_prompt(data, target_length, target_sections)

        try:
            draft, attempts = self.retry_policy.call(
                lambda: self._complete(user_prompt, system_prompt, model_name, deadline),
                label="narrative draft",
                deadline=deadline,
            )
        except CompletionError as exc:
            attempts = getattr(exc, "attempts", 1)
            logger.error("narrative draft failed after %d attempt(s): %s", attempts, exc)
            raise SynthesisError(f"narrative generation failed: {exc}", attempts=attempts) from exc

        result = NarrativeResult(text=draft, draft_lengths=[len(draft)], attempts=attempts)
        logger.info("narrative draft: length=%d target=%d", len(draft), target_length)

        while len(result.text) < target_length and result.expansion_count < self.max_expansions:
            remaining = self.retry_policy.remaining(deadline)
            if remaining is not None and remaining <= 0:
                logger.warning(
                    "narrative deadline reached after %d expansion(s), keeping current draft",
                    result.expansion_count,
                )
                result.deadline_exceeded = True
                break
            expansion_prompt = self._build_expansion_prompt(data, result.text, target_length)
            try:
                addition, _ = self.retry_policy.call(
                    lambda: self._complete(expansion_prompt, system_prompt, model_name, deadline),
                    label=f"narrative expansion {result.expansion_count + 1}",
                    deadline=deadline,
                )
            except CompletionError as exc:
                logger.warning(
                    "narrative expansion %d failed, keeping current draft: %s",
                    result.expansion_count + 1, exc,
                )
                remaining = self.retry_policy.remaining(deadline)
                if isinstance(exc, DeadlineExceededError) or (remaining is not None and remaining <= 0):
                    result.deadline_exceeded = True
                break
            result.text = result.text.rstrip() + "\n\n" + addition
            result.expansion_count += 1
            result.draft_lengths.append(len(result.text))
            logger.info("narrative expansion %d: length=%d", result.expansion_count, len(result.text))

        result.body = result.text.rstrip()
        result.text = result.body + "\n\n" + self.survey_overview(statistics) + "\n"
        return result

    def _complete(
        self,
        prompt: str,
        system_prompt: str,
        model_name: str | None,
        deadline: float | None = None,
    ) -> str:
        timeout_ms = self.timeout_ms
        remaining = self.retry_policy.remaining(deadline)
        if remaining is not None:
            capped = max(int(remaining * 1000), 1)
            timeout_ms = capped if timeout_ms is None else min(timeout_ms, capped)
        content = self.llm.complete(
            prompt,
            system_prompt=system_prompt,
            temperature=0.4,
            model_name=model_name,
            timeout_ms=timeout_ms,
        )
        text = (content or "").strip()
        if not text:
            raise EmptyCompletionError("narrative completion returned empty text")
        return text

    def survey_overview(self, statistics: StatisticalSnapshot) -> str:
        labels = _OVERVIEW_LABELS.get(self.language, _OVERVIEW_LABELS["English"])

        def bullet_list(entries: list[DistributionEntry]) -> str:
            return "\n".join(
                f"- {e.name}: {e.count}{labels['people']} ({e.percentage}%)" for e in entries
            )

        return "\n".join(
            [
                f"## {labels['title']}",
                "",
                f"### {labels['scale']}",
                f"- {labels['interviews']}: {statistics.total_interviews}{labels['items']}",
                f"- {labels['average']}: {statistics.average_report_length:,}{labels['chars']}",
                "",
                f"### {labels['personas']}",
                bullet_list(statistics.personas),
                "",
                f"### {labels['ages']}",
                bullet_list(statistics.age_distribution),
                "",
                f"### {labels['genders']}",
                bullet_list(statistics.gender_distribution),
            ]
        )

    def _prompt_data(
        self,
        theme_name: str,
        insights: list[ThematicInsight],
        profiles: list[PersonaProfile],
        statistics: StatisticalSnapshot,
        include_quotes: bool,
    ) -> dict:
        themes = insights[: self.max_themes]
        data = {
            "theme_name": theme_name,
            "statistics": {
                "total_interviews": statistics.total_interviews,
                "average_report_length": statistics.average_report_length,
                "personas": [e.model_dump() for e in statistics.personas],
                "age_distribution": [e.model_dump() for e in statistics.age_distribution],
                "gender_distribution": [e.model_dump() for e in statistics.gender_distribution],
            },
            "personas": [
                {
                    "name": p.name,
                    "count": p.count,
                    "characteristics": p.characteristics,
                    "primary_needs": p.primary_needs,
                    "pain_points": p.pain_points,
                    "expectations": p.expectations,
                    "budget": p.budget,
                    "decision_factors": p.decision_factors,
                }
                for p in profiles[: self.max_personas]
            ],
            "themes": [
                {
                    "theme": i.theme,
                    "description": i.description,
                    "frequency": i.metrics.frequency,
                    "consensus": round(i.metrics.consensus, 2),
                    "importance": round(i.metrics.importance, 2),
                    "evidence": i.evidence[:5],
                    "personas": list(i.personas),
                    "implications": i.implications,
                }
                for i in themes
            ],
        }
        if include_quotes:
            quotes: list[str] = []
            for insight in themes:
                quotes.extend(insight.quotes[:2])
            data["quotes"] = list(dict.fromkeys(quotes))[: self.max_quotes]
        return data

    def _build_system_prompt(self) -> str:
        return (
            "You are a senior user researcher writing a cross-interview summary report.\n\n"
            "RULES:\n"
            "1. Use ONLY the personas, themes, statistics and quotes provided. "
            "Do not invent personas, numbers, interviewees or quotes.\n"
            "2. Cite concrete numbers from statistics and theme frequencies where they support a point.\n"
            "3. Quote interviewees verbatim and only from the provided quotes.\n"
            "4. Structure the report in markdown: '## ' for sections, '### ' for subsections.\n"
            f"5. Write the entire report in {self.language}.\n\n"
            "OUTPUT FORMAT: Markdown text only, no preamble and no code fences."
        )

    @staticmethod
    def _build_user_prompt(data: dict, target_length: int, target_sections: int) -> str:
        prompt_data = {
            "task": "write_theme_summary_report",
            "target_length_chars": target_length,
            "target_section_count": target_sections,
            "data": data,
            "output_contract": {
                "format": "markdown",
                "sections": (
                    "executive summary, one section per major theme, persona analysis, "
                    "strategic recommendations, implementation roadmap (short, mid and long term), "
                    "risks and mitigations, conclusion"
                ),
            },
        }
        return json.dumps(prompt_data, ensure_ascii=False)

    @staticmethod
    def _build_expansion_prompt(data: dict, draft: str, target_length: int) -> str:
        existing = [line.strip() for line in draft.splitlines() if _HEADING.match(line)]
        prompt_data = {
            "task": "expand_theme_summary_report",
            "missing_chars": max(target_length - len(draft), 0),
            "existing_headings": existing,
            "draft_tail": draft[-EXPANSION_CONTEXT_CHARS:],
            "data": data,
            "output_contract": {
                "format": "markdown",
                "rule": (
                    "Write only NEW sections that deepen the analysis. "
                    "Do not repeat existing headings or restate the draft."
                ),
            },
        }
        return json.dumps(prompt_data, ensure_ascii=False)
