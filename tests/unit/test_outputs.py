"""Stage output aggregation tests."""

from datetime import datetime, timezone

from stratflow.models import ClassifiedError, FinalRecommendation
from stratflow.outputs import (
    CONNECTION_LOST_TEXT,
    OutputAggregator,
    completion_summary,
    failure_text,
    placeholder_text,
    recommendation_text,
)

TS = datetime(2025, 1, 1, 10, 0, 7, tzinfo=timezone.utc)
LOCAL_CLOCK = TS.astimezone().strftime("%H:%M:%S")


def test_updates_replace_previous_text(registry):
    outputs = OutputAggregator(registry)

    outputs.on_partial_output(0, "Gathering data", TS)
    outputs.on_partial_output(0, "Gathering data\nScoring tokens", TS)

    assert outputs.text_of(0) == "Gathering data\nScoring tokens"
    assert outputs.snapshot()[0].last_updated_at == TS
    assert outputs.text_of(1) == ""


def test_unknown_index_is_ignored(registry):
    outputs = OutputAggregator(registry)

    assert outputs.on_final_output(5, "nope", TS) is False
    assert len(outputs.snapshot()) == 2


def test_reset_clears_text(registry):
    outputs = OutputAggregator(registry)
    outputs.on_failure_output(1, "Agent Error: boom", TS)

    outputs.reset()

    assert outputs.text_of(1) == ""
    assert outputs.snapshot()[1].last_updated_at is None


def test_placeholder_and_summary_text():
    assert placeholder_text("Running step 1...", TS) == (
        f"Running step 1...\n\nStarted at: {LOCAL_CLOCK}"
    )
    assert placeholder_text("", TS).startswith("Running...")

    summary = completion_summary("Step 1 completed successfully!", 1500, TS)
    assert "Execution time: 1500ms" in summary
    assert summary.endswith(f"Completed at: {LOCAL_CLOCK}")


def test_failure_text_depends_on_kind():
    lost = ClassifiedError(kind="connectivity", message="gone", recoverable=True)
    logic = ClassifiedError(kind="server_logic", message="bad JSON", recoverable=False)

    assert failure_text(lost) == CONNECTION_LOST_TEXT
    assert failure_text(logic) == "Agent Error: bad JSON"


def test_recommendation_text_mentions_stage_count():
    result = FinalRecommendation(
        action="SWAP",
        raw_text="Swap ETH for PEPE",
        explanation="Momentum",
        total_time_ms=4200,
        produced_at=TS,
    )

    text = recommendation_text(result, 5)

    assert text.startswith("Final Recommendation: Swap ETH for PEPE")
    assert "Momentum" in text
    assert "4200ms using 5 AI agents" in text
