from __future__ import annotations

import logging
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Callable

from summary_app.config import PipelineConfig
from summary_app.exceptions import InputError, SynthesisError
from summary_app.schemas import (
    BatchFailureOut,
    IndividualReport,
    SummaryMetadata,
    SummaryOptions,
    SummaryReport,
)
from summary_app.services.batch_extractor import BatchExtractor, CompletionClient
from summary_app.services.features import FeatureExtractor
from summary_app.services.narrative import NarrativeSynthesizer
from summary_app.services.persona_profiles import PersonaProfileBuilder, reconcile_counts
from summary_app.services.quality import score_quality
from summary_app.services.retry import RetryPolicy
from summary_app.services.statistics import StatisticalAggregator
from summary_app.services.thematic_analyzer import ThematicAnalyzer

logger = logging.getLogger(__name__)


class SummaryPipeline:
    """Extraction, aggregation, synthesis and scoring for one theme.

    Phases run strictly in order. The input check happens before any
    completion call; extraction is the only concurrent phase.
    """

    def __init__(
        self,
        llm: CompletionClient,
        config: PipelineConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = cfg = config or PipelineConfig()
        self.extractor = BatchExtractor(
            llm,
            batch_size=cfg.batch_size,
            max_workers=cfg.max_concurrent_batches,
            failure_threshold=cfg.batch_failure_threshold,
            batch_timeout_ms=cfg.batch_timeout_ms,
            retry_policy=RetryPolicy(
                max_retries=cfg.batch_max_retries,
                base_delay_seconds=cfg.backoff_base_seconds,
                max_delay_seconds=cfg.backoff_max_seconds,
                sleep=sleep,
            ),
        )
        self.profile_builder = PersonaProfileBuilder()
        self.thematic_analyzer = ThematicAnalyzer(
            similarity_threshold=cfg.theme_similarity,
            max_quotes=cfg.quotes_per_insight,
        )
        self.aggregator = StatisticalAggregator()
        self.narrator = NarrativeSynthesizer(
            llm,
            retry_policy=RetryPolicy(
                max_retries=cfg.synthesis_max_retries,
                base_delay_seconds=cfg.backoff_base_seconds,
                max_delay_seconds=cfg.backoff_max_seconds,
                sleep=sleep,
            ),
            max_expansions=cfg.max_expansions,
            language=cfg.report_language,
        )
        self.feature_extractor = FeatureExtractor(
            max_features=cfg.max_features,
            max_personas=cfg.feature_personas,
            details_length=cfg.feature_details_length,
            language=cfg.report_language,
        )

    def validate(self, theme_name: str, reports: list[IndividualReport]) -> None:
        if not theme_name or not theme_name.strip():
            raise InputError("theme_name must not be blank", report_count=len(reports),
                             min_reports=self.config.min_reports)
        if len(reports) < self.config.min_reports:
            raise InputError(
                f"at least {self.config.min_reports} reports are required, got {len(reports)}",
                report_count=len(reports),
                min_reports=self.config.min_reports,
            )
        duplicated = sorted(i for i, n in Counter(r.interview_id for r in reports).items() if n > 1)
        if duplicated:
            raise InputError(
                f"duplicate interview_id values: {', '.join(duplicated[:5])}",
                report_count=len(reports),
                min_reports=self.config.min_reports,
            )

    def run(
        self,
        theme_name: str,
        reports: list[IndividualReport],
        options: SummaryOptions | None = None,
    ) -> SummaryReport:
        self.validate(theme_name, reports)
        options = options or SummaryOptions()
        cfg = self.config

        started = time.monotonic()
        deadline = started + cfg.overall_timeout_ms / 1000
        model = cfg.strong_model_name if options.use_strong_model else cfg.model_name
        target_length = options.target_length or cfg.target_length
        target_sections = options.target_section_count or cfg.target_sections
        logger.info(
            "summary start: theme=%r reports=%d model=%s target_length=%d",
            theme_name, len(reports), model, target_length,
        )

        extraction = self.extractor.extract(reports, model_name=model, deadline=deadline)

        profiles = reconcile_counts(self.profile_builder.build(reports, extraction.merged), len(reports))
        insights = self.thematic_analyzer.analyze(reports, extraction.merged)
        statistics = self.aggregator.aggregate(reports, insights)

        try:
            narrative = self.narrator.synthesize(
                theme_name,
                insights,
                profiles,
                statistics,
                target_length=target_length,
                target_sections=target_sections,
                include_quotes=options.include_quotes,
                model_name=model,
                deadline=deadline,
            )
        except SynthesisError as exc:
            raise exc.with_batches(
                batch_count=extraction.batch_count,
                succeeded_batches=len(extraction.succeeded_batches),
                failed_batches=len(extraction.failures),
            )
        statistics = self.aggregator.with_report_length(statistics, len(narrative.text))

        features = self.feature_extractor.extract(insights, profiles)
        quality = score_quality(narrative.body, features, target_length, target_sections)

        degraded = extraction.degraded or narrative.deadline_exceeded
        build_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "summary done: theme=%r length=%d insights=%d features=%d quality=%d degraded=%s build_ms=%d",
            theme_name, len(narrative.text), len(insights), len(features),
            quality.composite, degraded, build_ms,
        )

        return SummaryReport(
            theme_name=theme_name,
            report=narrative.text,
            features=features,
            insights=insights,
            personas=profiles,
            statistics=statistics,
            metadata=SummaryMetadata(
                total_reports=len(reports),
                report_length=len(narrative.text),
                unique_personas=len(profiles),
                extracted_insights=len(insights),
                quality_score=quality.composite,
                quality_breakdown=quality.as_breakdown(),
                degraded=degraded,
                deadline_exceeded=narrative.deadline_exceeded,
                batch_count=extraction.batch_count,
                succeeded_batches=len(extraction.succeeded_batches),
                failed_batches=len(extraction.failures),
                batch_failures=[BatchFailureOut(**f.as_dict()) for f in extraction.failures],
                expansion_count=narrative.expansion_count,
                model=model,
                build_ms=build_ms,
                generated_at=datetime.now(timezone.utc).isoformat(),
            ),
        )
