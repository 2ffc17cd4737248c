# ==============================================================================
# Tests for SessionTracker — session.py
# ==============================================================================
"""
Tests for session creation, attribution parsing and activity bookkeeping.
"""

from beacon.core.session import SessionTracker, parse_attribution

from tests.conftest import START_MS, FakeClock

# ==============================================================================
# parse_attribution
# ==============================================================================


class TestParseAttribution:
    """Tests for UTM parsing from the landing URL."""

    def test_all_parameters(self):
        url = "https://example.com/landing?utm_source=news&utm_medium=email&utm_campaign=spring"
        assert parse_attribution(url) == {
            "utm_source": "news",
            "utm_medium": "email",
            "utm_campaign": "spring",
        }

    def test_missing_parameters_are_none(self):
        result = parse_attribution("https://example.com/?utm_source=ads")
        assert result["utm_source"] == "ads"
        assert result["utm_medium"] is None
        assert result["utm_campaign"] is None

    def test_no_url(self):
        assert parse_attribution(None) == {
            "utm_source": None,
            "utm_medium": None,
            "utm_campaign": None,
        }

    def test_empty_value_is_none(self):
        assert parse_attribution("https://example.com/?utm_source=")["utm_source"] is None


# ==============================================================================
# SessionTracker
# ==============================================================================


class TestSessionTracker:
    """Tests for the per-lifetime session record."""

    def test_create_initial_state(self, sessions):
        """A fresh session has zero counters and parsed attribution."""
        session = sessions.snapshot()
        assert session.start_time == START_MS
        assert session.last_activity == START_MS
        assert session.page_views == 0
        assert session.events == 0
        assert session.user_id is None
        assert session.referrer == "https://news.example.org/"
        assert session.utm_source == "news"
        assert session.utm_medium == "email"
        assert session.utm_campaign == "spring"

    def test_session_ids_are_unique(self, clock):
        ids = {SessionTracker(clock=clock).session_id for _ in range(50)}
        assert len(ids) == 50

    def test_touch_updates_activity_and_counts(self, sessions, clock):
        clock.advance(5_000)
        ts = sessions.touch()
        session = sessions.snapshot()
        assert ts == START_MS + 5_000
        assert session.last_activity == START_MS + 5_000
        assert session.events == 1
        assert session.duration == 5_000

    def test_last_activity_never_before_start(self):
        """A clock that goes backwards never moves last_activity below start."""
        clock = FakeClock()
        tracker = SessionTracker(clock=clock)
        clock.advance(-10_000)
        tracker.touch()
        session = tracker.snapshot()
        assert session.last_activity >= session.start_time

    def test_record_page_view(self, sessions):
        sessions.record_page_view()
        sessions.record_page_view()
        assert sessions.snapshot().page_views == 2

    def test_set_user_id(self, sessions):
        sessions.set_user_id("user-1")
        assert sessions.user_id == "user-1"
        assert sessions.snapshot().user_id == "user-1"

    def test_snapshot_is_independent(self, sessions):
        """Mutating the tracker after a snapshot leaves the snapshot unchanged."""
        snapshot = sessions.snapshot()
        sessions.touch()
        assert snapshot.events == 0
        assert sessions.snapshot().events == 1

    def test_wire_form_uses_camel_case(self, sessions):
        message = sessions.snapshot().to_message()
        assert "sessionId" in message
        assert "pageViews" in message
        assert "utmSource" in message
