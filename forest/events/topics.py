"""System-guaranteed subjects on the River."""


class SystemSubjects:
    """Well-known subjects published by the engine itself."""

    # Diagnostic envelope for every event that exhausted retries or was rejected
    DEAD_LETTER = "forest.deadletter"


# Payload keys of every DEAD_LETTER event
DEAD_LETTER_PAYLOAD = {
    "original_event_id": "str",
    "original_subject": "str",
    "binding": "str",
    "kind": "str",
    "reason": "str",
    "attempts": "int",
    "detail": "dict",
}
