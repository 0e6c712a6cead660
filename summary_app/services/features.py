from __future__ import annotations

from summary_app.schemas import Feature, PersonaProfile, ThematicInsight

_PERSONA_LABELS = {
    "Japanese": {
        "title": "{name}のニーズ",
        "action": "{name}向けの機能強化",
    },
    "English": {
        "title": "Needs of {name}",
        "action": "Strengthen the product for {name}",
    },
}


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(limit - 1, 0)].rstrip() + "…"


class FeatureExtractor:
    """Turns the top-ranked insights into an ordered feature list.

    Insight features come first, ordered by (frequency, importance). Up to
    ``max_persona_features`` persona features follow, one per leading persona
    that has primary needs.
    """

    def __init__(
        self,
        *,
        max_features: int = 10,
        max_personas: int = 3,
        details_length: int = 200,
        max_quotes: int = 3,
        max_persona_features: int = 3,
        max_persona_quotes: int = 2,
        language: str = "Japanese",
    ) -> None:
        self.max_features = max_features
        self.max_personas = max_personas
        self.details_length = details_length
        self.max_quotes = max_quotes
        self.max_persona_features = max_persona_features
        self.max_persona_quotes = max_persona_quotes
        self.language = language

    def extract(
        self,
        insights: list[ThematicInsight],
        profiles: list[PersonaProfile] | None = None,
    ) -> list[Feature]:
        ranked = sorted(insights, key=lambda i: (-i.metrics.frequency, -i.metrics.importance))
        features = [
            Feature(
                title=insight.theme,
                priority=insight.metrics.frequency,
                mention_count=insight.metrics.frequency,
                personas=list(insight.personas)[: self.max_personas],
                details=truncate(insight.description, self.details_length),
                quotes=insight.quotes[: self.max_quotes],
                action_items=list(insight.implications),
            )
            for insight in ranked[: self.max_features]
        ]
        features.extend(self.persona_features(profiles or []))
        return features

    def persona_features(self, profiles: list[PersonaProfile]) -> list[Feature]:
        labels = _PERSONA_LABELS.get(self.language, _PERSONA_LABELS["English"])
        features = []
        for profile in profiles[: self.max_persona_features]:
            if not profile.primary_needs:
                continue
            features.append(
                Feature(
                    title=labels["title"].format(name=profile.name),
                    priority=profile.count,
                    mention_count=profile.count,
                    personas=[profile.name],
                    details=truncate("; ".join(profile.primary_needs), self.details_length),
                    quotes=profile.quotes[: self.max_persona_quotes],
                    action_items=[labels["action"].format(name=profile.name)],
                )
            )
        return features
