import json
import logging

from codepair.core.logger import log_event


def test_log_event_redacts_code_and_review_text(caplog):
    with caplog.at_level(logging.INFO, logger="codepair.events"):
        log_event(
            "interviews",
            "review_submitted",
            "session-1",
            current_code="secret solution",
            feedback="private notes",
            rating=4,
            review={"overall_assessment": "hire", "strengths": ["tests"]},
        )

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["component"] == "interviews"
    assert payload["session_id"] == "session-1"
    assert payload["current_code"] == {"redacted": True, "length": 15}
    assert payload["feedback"] == {"redacted": True, "length": 13}
    assert payload["rating"] == 4
    assert payload["review"]["overall_assessment"] == {"redacted": True, "length": 4}
    assert payload["review"]["strengths"] == ["tests"]
