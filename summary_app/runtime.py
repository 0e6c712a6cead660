from __future__ import annotations

from dataclasses import dataclass

from summary_app.config import PipelineConfig, Settings
from summary_app.services.chat_llm import CompletionLLM
from summary_app.services.pacing import RequestPacer
from summary_app.services.pipeline import SummaryPipeline


@dataclass(slots=True)
class AppRuntime:
    settings: Settings
    config: PipelineConfig
    pacer: RequestPacer
    llm: CompletionLLM
    pipeline: SummaryPipeline


def build_runtime(settings: Settings) -> AppRuntime:
    pacer = RequestPacer(
        requests_per_window=settings.llm_pacing_requests,
        window_seconds=settings.llm_pacing_window_seconds,
    )
    llm = CompletionLLM(
        api_key=settings.llm_api_key.get_secret_value(),
        model_name=settings.report_model_name,
        timeout_ms=settings.report_timeout_ms,
        base_url=settings.llm_base_url,
        pacer=pacer,
    )
    config = PipelineConfig.from_settings(settings)
    return AppRuntime(
        settings=settings,
        config=config,
        pacer=pacer,
        llm=llm,
        pipeline=SummaryPipeline(llm, config),
    )
