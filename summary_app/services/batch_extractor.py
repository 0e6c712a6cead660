from __future__ import annotations

import concurrent.futures
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from summary_app.exceptions import CompletionError, ExtractionError, MalformedResponseError
from summary_app.schemas import IndividualReport
from summary_app.services.chat_llm import parse_json_object
from summary_app.services.extracted import (
    ExtractionKey,
    MergedExtraction,
    normalize_value,
)
from summary_app.services.persona_profiles import persona_key
from summary_app.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

EXTRACTION_FIELDS = (
    "themes",
    "needs",
    "pain_points",
    "expectations",
    "budget",
    "decision_factors",
    "characteristics",
    "quotes",
    "quantitative_mentions",
)

# Per-report text budget inside one extraction prompt.
MAX_REPORT_CHARS = 6000


class CompletionClient(Protocol):
    def complete(self, prompt: str, **kwargs) -> str: ...


@dataclass(slots=True)
class BatchFailure:
    batch_index: int
    interview_ids: list[str]
    reason: str
    retryable: bool = False
    attempts: int = 0

    def as_dict(self) -> dict:
        return {
            "batch_index": self.batch_index,
            "interview_ids": list(self.interview_ids),
            "reason": self.reason,
            "retryable": self.retryable,
            "attempts": self.attempts,
        }


@dataclass(slots=True)
class BatchResult:
    batch_index: int
    entries: MergedExtraction
    attempts: int = 1


@dataclass(slots=True)
class ExtractionResult:
    merged: MergedExtraction
    batch_count: int
    succeeded_batches: list[int] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.failures)

    @property
    def failed_fraction(self) -> float:
        if self.batch_count == 0:
            return 0.0
        return len(self.failures) / self.batch_count

    def interview_ids(self) -> set[str]:
        return {key.interview_id for key in self.merged}


def partition(reports: list[IndividualReport], batch_size: int) -> list[list[IndividualReport]]:
    if batch_size <= 0:
        raise ValueError("batch_size must be > 0")
    return [reports[i : i + batch_size] for i in range(0, len(reports), batch_size)]


def merge_batches(results: list[BatchResult]) -> MergedExtraction:
    """Fold batch results into one ordered map, in batch-index order.

    The fold is serial and keyed by ``batch_index``; the order in which the
    results were produced or listed does not affect the outcome.
    """
    merged: MergedExtraction = {}
    for result in sorted(results, key=lambda r: r.batch_index):
        for key, values in result.entries.items():
            existing = merged.get(key)
            if existing is None:
                merged[key] = list(values)
            else:
                existing.extend(values)
    return merged


class BatchExtractor:
    """Structured per-batch extraction with bounded concurrency."""

    def __init__(
        self,
        llm: CompletionClient,
        *,
        batch_size: int = 5,
        max_workers: int = 2,
        failure_threshold: float = 0.5,
        batch_timeout_ms: int = 90000,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        self.llm = llm
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.failure_threshold = failure_threshold
        self.batch_timeout_ms = batch_timeout_ms
        self.retry_policy = retry_policy or RetryPolicy()

    def extract(
        self,
        reports: list[IndividualReport],
        *,
        model_name: str | None = None,
        deadline: float | None = None,
    ) -> ExtractionResult:
        """Run every batch and merge the successful ones.

        ``deadline`` is a ``time.monotonic()`` value; batches still pending
        when it passes are cancelled and recorded as failed.
        """
        batches = partition(reports, self.batch_size)
        logger.info(
            "extraction start: reports=%d batches=%d batch_size=%d workers=%d",
            len(reports), len(batches), self.batch_size, self.max_workers,
        )

        results: list[BatchResult | None] = [None] * len(batches)
        failures: dict[int, BatchFailure] = {}

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="summary-extract"
        )
        try:
            futures = {
                executor.submit(self.extract_batch, index, batch, model_name, deadline): index
                for index, batch in enumerate(batches)
            }
            timeout = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            done, pending = concurrent.futures.wait(futures, timeout=timeout)

            for future in done:
                index = futures[future]
                exc = future.exception()
                if exc is None:
                    results[index] = future.result()
                    continue
                failures[index] = self._failure_for(index, batches[index], exc)
                logger.warning(
                    "extraction batch %d/%d skipped: %s",
                    index + 1, len(batches), failures[index].reason,
                )

            for future in pending:
                index = futures[future]
                future.cancel()
                failures[index] = BatchFailure(
                    batch_index=index,
                    interview_ids=[r.interview_id for r in batches[index]],
                    reason="overall timeout exceeded",
                    retryable=True,
                )
                logger.warning("extraction batch %d/%d abandoned at overall timeout", index + 1, len(batches))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        completed = [r for r in results if r is not None]
        result = ExtractionResult(
            merged=merge_batches(completed),
            batch_count=len(batches),
            succeeded_batches=sorted(r.batch_index for r in completed),
            failures=[failures[i] for i in sorted(failures)],
        )

        if result.failed_fraction > self.failure_threshold:
            raise ExtractionError(
                f"{len(result.failures)} of {result.batch_count} extraction batches failed "
                f"(threshold {self.failure_threshold:.0%})",
                batch_count=result.batch_count,
                succeeded_batches=len(result.succeeded_batches),
                failures=[f.as_dict() for f in result.failures],
            )

        logger.info(
            "extraction done: succeeded=%d failed=%d keys=%d",
            len(result.succeeded_batches), len(result.failures), len(result.merged),
        )
        return result

    def extract_batch(
        self,
        batch_index: int,
        batch: list[IndividualReport],
        model_name: str | None = None,
        deadline: float | None = None,
    ) -> BatchResult:
        system_prompt = self._build_system_prompt()
        user_prompt = self._build_user_prompt(batch)

        def attempt() -> MergedExtraction:
            content = self.llm.complete(
                user_prompt,
                system_prompt=system_prompt,
                temperature=0.2,
                structured_output=True,
                model_name=model_name,
                timeout_ms=self._call_timeout_ms(deadline),
            )
            return self._parse_batch(parse_json_object(content), batch)

        entries, attempts = self.retry_policy.call(
            attempt, label=f"extraction batch {batch_index}", deadline=deadline
        )
        return BatchResult(batch_index=batch_index, entries=entries, attempts=attempts)

    def _call_timeout_ms(self, deadline: float | None) -> int:
        """Per-call timeout, never longer than what is left before ``deadline``."""
        remaining = self.retry_policy.remaining(deadline)
        if remaining is None:
            return self.batch_timeout_ms
        return max(min(self.batch_timeout_ms, int(remaining * 1000)), 1)

    @staticmethod
    def _failure_for(index: int, batch: list[IndividualReport], exc: BaseException) -> BatchFailure:
        retryable = isinstance(exc, CompletionError) and exc.retryable
        return BatchFailure(
            batch_index=index,
            interview_ids=[r.interview_id for r in batch],
            reason=f"{type(exc).__name__}: {exc}",
            retryable=retryable,
            attempts=getattr(exc, "attempts", 1),
        )

    @staticmethod
    def _build_system_prompt() -> str:
        return (
            "You are a research analyst extracting structured findings from user-interview reports.\n\n"
            "RULES:\n"
            "1. Return one entry per report in the batch, keyed by its interview_id.\n"
            "2. Only extract what the report states. Do not invent needs, quotes or numbers.\n"
            "3. themes are short labels (2-6 words) naming the topic, not sentences.\n"
            "4. quotes are verbatim statements from the report, at most 120 characters each.\n"
            "5. quantitative_mentions are statements containing concrete numbers "
            "(prices, counts, durations, percentages).\n"
            "6. budget is the interviewee's stated price range or willingness to pay, or null.\n"
            "7. Keep the original language of the report for every extracted value.\n\n"
            "OUTPUT FORMAT: Strict JSON matching the output_contract."
        )

    @staticmethod
    def _build_user_prompt(batch: list[IndividualReport]) -> str:
        reports = []
        for report in batch:
            text = report.report
            if len(text) > MAX_REPORT_CHARS:
                text = text[:MAX_REPORT_CHARS].rstrip() + "…"
            reports.append(
                {
                    "interview_id": report.interview_id,
                    "persona": persona_key(report.user_info).label,
                    "report": text,
                }
            )

        prompt_data = {
            "task": "extract_interview_findings",
            "reports": reports,
            "output_contract": {
                "reports": [
                    {
                        "interview_id": "string (from reports[].interview_id)",
                        "themes": ["string"],
                        "needs": ["string"],
                        "pain_points": ["string"],
                        "expectations": ["string"],
                        "budget": "string or null",
                        "decision_factors": ["string"],
                        "characteristics": ["string"],
                        "quotes": ["string"],
                        "quantitative_mentions": ["string"],
                    }
                ]
            },
        }
        return json.dumps(prompt_data, ensure_ascii=False)

    @staticmethod
    def _parse_batch(parsed: dict, batch: list[IndividualReport]) -> MergedExtraction:
        """Attribute each returned entry to a batch member and normalize its fields."""
        raw_reports = parsed.get("reports")
        if not isinstance(raw_reports, list):
            raise MalformedResponseError("extraction response missing reports list")

        batch_ids = [r.interview_id for r in batch]
        known_ids = set(batch_ids)
        entries: MergedExtraction = {}
        attributed = 0

        for position, raw in enumerate(raw_reports):
            if not isinstance(raw, dict):
                continue
            interview_id = str(raw.get("interview_id", "")).strip()
            if not interview_id and position < len(batch_ids):
                interview_id = batch_ids[position]
            if interview_id not in known_ids:
                logger.info("ignoring extraction entry for unknown interview_id=%r", interview_id)
                continue
            attributed += 1

            for field_name, raw_value in raw.items():
                if field_name == "interview_id":
                    continue
                value = normalize_value(raw_value)
                if value is None:
                    continue
                key = ExtractionKey(interview_id, str(field_name))
                entries.setdefault(key, []).append(value)

        if raw_reports and attributed == 0:
            raise MalformedResponseError("extraction response has no entries for this batch")
        return entries
