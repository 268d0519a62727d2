from typing import Dict, List

import pytest

from stratflow.registry import StageRegistry

SWAP_TEXT = "Swap ETH for PEPE and hold for 2-4 weeks"
HOLD_TEXT = "Don't swap anything and hold ETH for more 1-2 weeks"


def step_start(step: int, second: int = 0) -> Dict:
    return {
        "type": "step_start",
        "step": step,
        "totalSteps": 2,
        "message": f"Running step {step}...",
        "timestamp": f"2025-01-01T10:00:{second:02d}Z",
    }


def step_complete(step: int, second: int = 0, step_time: int = 1500) -> Dict:
    return {
        "type": "step_complete",
        "step": step,
        "totalSteps": 2,
        "message": f"Step {step} completed successfully!",
        "stepTime": step_time,
        "timestamp": f"2025-01-01T10:00:{second:02d}Z",
    }


def workflow_complete(text: str = SWAP_TEXT, total_time: int = 4200) -> Dict:
    return {
        "type": "workflow_complete",
        "message": "Simplified workflow completed successfully!",
        "totalTime": total_time,
        "timestamp": "2025-01-01T10:00:30Z",
        "recommendation": {
            "recommendation": text,
            "explanation": "PEPE shows stronger momentum than ETH.",
        },
    }


def successful_run(text: str = SWAP_TEXT) -> List[Dict]:
    return [
        {"type": "init", "message": "Workflow initialized"},
        {"type": "workflow_start", "step": 0, "totalSteps": 2},
        step_start(1, 1),
        step_complete(1, 10),
        step_start(2, 11),
        step_complete(2, 20),
        workflow_complete(text),
    ]


@pytest.fixture
def registry() -> StageRegistry:
    return StageRegistry.from_preset("two_stage")


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point config loading at a missing file so local config.yaml is ignored."""
    monkeypatch.setenv("STRATFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("STRATFLOW_TRANSPORT", raising=False)
    monkeypatch.delenv("STRATFLOW_BASE_URL", raising=False)
    monkeypatch.delenv("STRATFLOW_TOKEN_FILE", raising=False)
    monkeypatch.delenv("STRATFLOW_LOG_LEVEL", raising=False)
    return tmp_path
