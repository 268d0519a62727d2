"""Stage registry: the ordered, fixed list of pipeline stages for a run."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Mapping, Tuple

from pydantic import ValidationError

from .constants import DEFAULT_PRESET
from .errors import ConfigurationError
from .models import StageDefinition

# Pipeline variants served by the recommendation backend over time. The
# streaming endpoint currently runs the two-stage pipeline.
PRESETS: Dict[str, List[Tuple[str, str]]] = {
    "two_stage": [
        (
            "Analysis Agent",
            "Comprehensive cryptocurrency market analysis and opportunity identification",
        ),
        (
            "Decision Agent",
            "Final investment decision and recommendation generation",
        ),
    ],
    "four_stage": [
        ("Investment Committee", "Initial strategy review and current holdings analysis"),
        ("Quantitative Analysis", "Mathematical models and financial metrics evaluation"),
        ("Qualitative Due Diligence", "Fundamental analysis and market research"),
        ("Risk Assessment", "Risk evaluation and portfolio impact analysis"),
    ],
    "five_stage": [
        (
            "Investor Profile Agent",
            "Analyzes strategy and converts to structured investment profile",
        ),
        (
            "Market Screener Agent",
            "Screens market for investment candidates based on profile",
        ),
        ("Quantitative Analysis Agent", "Mathematical models and quantitative scoring"),
        ("Qualitative Due Diligence Agent", "Fundamental analysis and risk assessment"),
        ("Investment Committee Agent", "Final investment decision and recommendation"),
    ],
}


class StageRegistry:
    """Immutable ordered collection of :class:`StageDefinition`.

    Indices must be unique and contiguous from zero; the index is the only
    key used to address a stage elsewhere in the engine.
    """

    def __init__(self, definitions: Iterable[StageDefinition]) -> None:
        ordered = sorted(definitions, key=lambda d: d.index)
        indices = [d.index for d in ordered]
        if indices != list(range(len(ordered))):
            raise ConfigurationError(
                f"Stage indices must be unique and contiguous from 0, got {indices}"
            )
        self._definitions: Tuple[StageDefinition, ...] = tuple(ordered)

    @classmethod
    def from_preset(cls, name: str = DEFAULT_PRESET) -> "StageRegistry":
        """Build one of the built-in pipeline layouts."""
        try:
            stages = PRESETS[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown stage preset '{name}'. Available: {', '.join(sorted(PRESETS))}"
            ) from None
        return cls(
            StageDefinition(index=i, name=stage_name, description=description)
            for i, (stage_name, description) in enumerate(stages)
        )

    @classmethod
    def from_config(cls, stages: Iterable[Mapping[str, Any]]) -> "StageRegistry":
        """Build a registry from config entries.

        Entries without an ``index`` take their position in the list.
        """
        definitions = []
        for position, entry in enumerate(stages):
            data = dict(entry)
            data.setdefault("index", position)
            try:
                definitions.append(StageDefinition(**data))
            except ValidationError as e:
                raise ConfigurationError(f"Invalid stage definition {entry!r}: {e}") from e
        if not definitions:
            raise ConfigurationError("At least one stage must be defined")
        return cls(definitions)

    def definitions(self) -> Tuple[StageDefinition, ...]:
        return self._definitions

    def get(self, index: int) -> StageDefinition:
        return self._definitions[index]

    def names(self) -> List[str]:
        return [d.name for d in self._definitions]

    def __contains__(self, index: object) -> bool:
        return isinstance(index, int) and 0 <= index < len(self._definitions)

    def __iter__(self) -> Iterator[StageDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __repr__(self) -> str:
        return f"StageRegistry({self.names()!r})"


__all__ = ["PRESETS", "StageRegistry"]
