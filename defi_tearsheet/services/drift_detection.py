from typing import Any, Iterable

from defi_tearsheet.core.logging_config import get_logger

logger = get_logger("drift_detection")

def detect_drift(payload: Any, expected_keys: Iterable[str], source_name: str) -> bool:
    """
    Checks a provider payload for the keys the normalizer reads.
    Logs a warning and returns True when none of them are present.
    A missing payload (failed fetch) is not drift.
    """
    if payload is None:
        return False

    expected = set(expected_keys)
    if not isinstance(payload, dict):
        logger.warning("potential_schema_drift", source=source_name, message="Payload is not an object", payload_type=type(payload).__name__)
        return True

    incoming_keys = set(payload.keys())
    if not incoming_keys.intersection(expected):
        logger.warning("potential_schema_drift", source=source_name, message="No expected keys found", expected_keys=sorted(expected), incoming_keys=sorted(incoming_keys)[:20])
        return True
    return False
