"""Shared constants for stratflow."""

DEFAULT_SESSION_GRACE_DELAY = 4.0
DEFAULT_STEP_BASE = 1
DEFAULT_PRESET = "two_stage"

DEFAULT_BASE_URL = "http://localhost:5001"
DEFAULT_STREAM_PATH = "/api/ai-recommendations/{subject_id}/request-stream"
REDIS_CHANNEL_PREFIX = "stratflow:run:"

NEGATED_SWAP_PHRASE = "don't swap"
SWAP_PHRASE = "swap"
