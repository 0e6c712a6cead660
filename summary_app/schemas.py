from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    age: str | None = None
    gender: str | None = None
    occupation: str | None = None

    @field_validator("age", "gender", "occupation", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class IndividualReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    report: str
    user_info: UserInfo = Field(default_factory=UserInfo, alias="userInfo")
    interview_id: str = Field(min_length=1, max_length=128, alias="interviewId")


class SummaryOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    use_strong_model: bool = Field(default=False, alias="useStrongModel")
    target_length: int | None = Field(default=None, gt=0, le=200000, alias="targetLength")
    include_quotes: bool = Field(default=True, alias="includeQuotes")
    target_section_count: int | None = Field(default=None, gt=0, le=100, alias="targetSectionCount")


class SummaryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    theme_name: str = Field(min_length=1, max_length=256, alias="themeName")
    reports: list[IndividualReport]
    options: SummaryOptions = Field(default_factory=SummaryOptions)


class InsightMetrics(BaseModel):
    frequency: int = Field(ge=0)
    importance: float = Field(ge=0, le=1)
    consensus: float = Field(ge=0, le=1)


class ThematicInsight(BaseModel):
    theme: str
    description: str
    evidence: list[str] = Field(default_factory=list)
    personas: dict[str, list[str]] = Field(default_factory=dict)
    metrics: InsightMetrics
    mentions: int = Field(default=0, ge=0)
    quotes: list[str] = Field(default_factory=list)
    implications: list[str] = Field(default_factory=list)


class PersonaProfile(BaseModel):
    name: str
    count: int = Field(ge=0)
    characteristics: list[str] = Field(default_factory=list)
    primary_needs: list[str] = Field(default_factory=list)
    pain_points: list[str] = Field(default_factory=list)
    expectations: list[str] = Field(default_factory=list)
    budget: str = ""
    decision_factors: list[str] = Field(default_factory=list)
    quotes: list[str] = Field(default_factory=list)


class DistributionEntry(BaseModel):
    name: str
    count: int = Field(ge=0)
    percentage: int = Field(ge=0, le=100)


class ThemeMention(BaseModel):
    theme: str
    mentions: int = Field(ge=0)


class StatisticalSnapshot(BaseModel):
    total_interviews: int = Field(ge=0)
    total_input_length: int = Field(default=0, ge=0)
    average_report_length: int = Field(default=0, ge=0)
    total_report_length: int = Field(default=0, ge=0)
    personas: list[DistributionEntry] = Field(default_factory=list)
    age_distribution: list[DistributionEntry] = Field(default_factory=list)
    gender_distribution: list[DistributionEntry] = Field(default_factory=list)
    key_themes: list[ThemeMention] = Field(default_factory=list)
    percentage_tolerance: float = Field(default=0.0, ge=0)


class Feature(BaseModel):
    title: str
    priority: int = Field(ge=0)
    mention_count: int = Field(ge=0)
    personas: list[str] = Field(default_factory=list)
    details: str = ""
    quotes: list[str] = Field(default_factory=list)
    action_items: list[str] = Field(default_factory=list)


class QualityBreakdown(BaseModel):
    length: float = Field(ge=0, le=100)
    structure: float = Field(ge=0, le=100)
    specificity: float = Field(ge=0, le=100)
    composite: int = Field(ge=0, le=100)


class BatchFailureOut(BaseModel):
    batch_index: int = Field(ge=0)
    interview_ids: list[str] = Field(default_factory=list)
    reason: str
    retryable: bool = False
    attempts: int = Field(default=0, ge=0)


class SummaryMetadata(BaseModel):
    total_reports: int = Field(ge=0)
    report_length: int = Field(ge=0)
    unique_personas: int = Field(ge=0)
    extracted_insights: int = Field(ge=0)
    quality_score: int = Field(ge=0, le=100)
    quality_breakdown: QualityBreakdown
    degraded: bool = False
    deadline_exceeded: bool = False
    batch_count: int = Field(default=0, ge=0)
    succeeded_batches: int = Field(default=0, ge=0)
    failed_batches: int = Field(default=0, ge=0)
    batch_failures: list[BatchFailureOut] = Field(default_factory=list)
    expansion_count: int = Field(default=0, ge=0)
    model: str = ""
    build_ms: int = Field(default=0, ge=0)
    generated_at: str = ""


class SummaryReport(BaseModel):
    theme_name: str
    report: str
    features: list[Feature] = Field(default_factory=list)
    insights: list[ThematicInsight] = Field(default_factory=list)
    personas: list[PersonaProfile] = Field(default_factory=list)
    statistics: StatisticalSnapshot
    metadata: SummaryMetadata


class HealthResponse(BaseModel):
    status: str = "ok"
    app_name: str
    model_name: str
    strong_model_name: str
    batch_size: int
    min_reports: int
    max_concurrent_batches: int


class ErrorResponse(BaseModel):
    detail: str
    phase: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
