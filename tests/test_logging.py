from __future__ import annotations

from sybilshield_relay.logging import MASK, redact, tag_pipeline


def test_redacts_top_level_and_nested_secrets():
    ev = redact(
        None,
        "info",
        {
            "event": "badge_issued",
            "nonce": "123field",
            "Authorization": "Bearer x",
            "audit": {"status": "ok", "api_key": "k", "items": [{"signature": "s", "n": 1}]},
            "empty": None,
        },
    )
    assert ev["nonce"] == MASK
    assert ev["Authorization"] == MASK
    assert ev["audit"]["status"] == "ok"
    assert ev["audit"]["api_key"] == MASK
    assert ev["audit"]["items"] == [{"signature": MASK, "n": 1}]
    assert ev["empty"] is None


def test_pipeline_tag_from_event_name():
    assert tag_pipeline(None, "info", {"event": "vote_cast"})["pipeline"] == "vote"
    assert tag_pipeline(None, "info", {"event": "verification_submitted"})["pipeline"] == "verify"
    assert "pipeline" not in tag_pipeline(None, "info", {"event": "relay_started"})
    assert tag_pipeline(None, "info", {"event": "badge_issued", "pipeline": "x"})["pipeline"] == "x"
