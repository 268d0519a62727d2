"""Build the final recommendation record for a successful run."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from .constants import NEGATED_SWAP_PHRASE, SWAP_PHRASE
from .errors import InvalidStateError
from .models import Action, FinalRecommendation

logger = logging.getLogger(__name__)


def classify_action(text: str) -> Action:
    """Derive HOLD or SWAP from the recommendation text.

    Plain substring matching: "don't swap" wins over "swap", and anything
    else is HOLD. Matches how the server-side notifications label the same
    text.
    """
    lowered = (text or "").lower().replace("’", "'")
    if NEGATED_SWAP_PHRASE in lowered:
        return "HOLD"
    if SWAP_PHRASE in lowered:
        return "SWAP"
    return "HOLD"


class RunFinalizer:
    """Produces exactly one :class:`FinalRecommendation` per run."""

    def __init__(self) -> None:
        self._result: Optional[FinalRecommendation] = None

    @property
    def result(self) -> Optional[FinalRecommendation]:
        return self._result

    def reset(self) -> None:
        self._result = None

    def finalize(
        self,
        raw_text: str,
        explanation: str,
        total_time_ms: int,
        timestamp: datetime,
    ) -> FinalRecommendation:
        if self._result is not None:
            raise InvalidStateError("Run has already been finalized")
        self._result = FinalRecommendation(
            action=classify_action(raw_text),
            raw_text=raw_text,
            explanation=explanation,
            total_time_ms=total_time_ms,
            produced_at=timestamp,
        )
        logger.info(
            f"Recommendation finalized: {self._result.action} after {total_time_ms}ms"
        )
        return self._result
