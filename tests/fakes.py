from __future__ import annotations

import json
import threading

from summary_app.exceptions import CompletionRequestError
from summary_app.schemas import IndividualReport, UserInfo


def make_report(
    interview_id: str,
    *,
    age: str | None = "30s",
    gender: str | None = "female",
    occupation: str | None = "engineer",
    text: str = "Interview notes.",
) -> IndividualReport:
    return IndividualReport(
        report=text,
        user_info=UserInfo(age=age, gender=gender, occupation=occupation),
        interview_id=interview_id,
    )


def default_findings(interview_id: str) -> dict:
    return {
        "themes": ["Price transparency"],
        "needs": [f"A clear price list is important ({interview_id})"],
        "pain_points": ["Hidden fees on the invoice"],
        "expectations": ["Monthly plan under 3000 yen"],
        "budget": "3000 yen per month",
        "decision_factors": ["price", "support"],
        "characteristics": ["cost conscious"],
        "quotes": [f"I just want to know the price up front ({interview_id})"],
    }


class FakeLLM:
    """Completion double: structured calls extract, plain calls write narrative.

    ``findings`` maps interview_id to the entry returned for that report.
    Batches containing an id in ``fail_ids`` raise a terminal error.
    """

    def __init__(
        self,
        *,
        findings: dict[str, dict] | None = None,
        fail_ids: set[str] | None = None,
        narratives: list[str] | None = None,
    ) -> None:
        self.findings = findings or {}
        self.fail_ids = fail_ids or set()
        self.narratives = list(narratives or [])
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    @property
    def extraction_calls(self) -> list[dict]:
        return [c for c in self.calls if c.get("structured_output")]

    @property
    def narrative_calls(self) -> list[dict]:
        return [c for c in self.calls if not c.get("structured_output")]

    def complete(self, prompt: str, **kwargs) -> str:
        with self._lock:
            self.calls.append({"prompt": prompt, **kwargs})

        if kwargs.get("structured_output"):
            ids = [r["interview_id"] for r in json.loads(prompt)["reports"]]
            if self.fail_ids.intersection(ids):
                raise CompletionRequestError("rejected (status=400)", status_code=400)
            entries = [
                {"interview_id": i, **self.findings.get(i, default_findings(i))} for i in ids
            ]
            return json.dumps({"reports": entries}, ensure_ascii=False)

        with self._lock:
            if self.narratives:
                return self.narratives.pop(0)
        return "## Summary\n\nPrice transparency matters to 5 of 5 interviewees.\n"

