# ==============================================================================
# Cohort Engine
# ==============================================================================
"""
Weekly acquisition cohorts and retention over time.

Each user belongs to the cohort of the ISO week (starting Monday) of their
signup date; the first assignment wins. Daily activity is merged additively
into one record per user per calendar day.

For a cohort starting on date C, N-day retention is the percentage of its
members with an active record (events or sessions above zero) dated on or
after C + N days. Engagement averages are taken over members with at least
one activity record.
"""

import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from beacon.core.models import (
    RETENTION_HORIZONS,
    AverageRetention,
    CohortAnalysisResult,
    CohortData,
    CohortEngagement,
    CohortRetention,
    CohortSummary,
    Event,
    Trend,
    UserActivityRecord,
)
from beacon.utils.clock import iso_week_label, ms_to_date, now_ms, parse_date, week_start

if TYPE_CHECKING:
    from beacon.core.emitter import EventEmitter

logger = logging.getLogger(__name__)

COHORT_EVENT = "cohort_assigned"
ACTIVITY_EVENT = "user_activity"

# Relative change in mean day-7 retention that counts as a trend
TREND_THRESHOLD = 0.10
TREND_WINDOW = 3


class CohortEngine:
    """Cohort membership, daily activity and retention analysis."""

    def __init__(
        self,
        emitter: "EventEmitter | None" = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._emitter = emitter
        self._clock = clock
        self._lock = threading.RLock()
        self._cohorts: dict[str, date] = {}
        # user_id -> day -> record
        self._activity: dict[str, dict[date, UserActivityRecord]] = defaultdict(dict)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def assign_cohort(
        self, user_id: str, signup_date: str | date | datetime | None = None
    ) -> date | None:
        """
        Place a user in the cohort of their signup week.

        Args:
            user_id: User to assign
            signup_date: Signup date; today when omitted

        Returns:
            The cohort start date (an existing assignment wins), or None
            for an unusable date
        """
        try:
            day = parse_date(signup_date) if signup_date is not None else self._today()
        except ValueError as e:
            logger.warning("Invalid signup date %r for %s: %s", signup_date, user_id, e)
            return None

        cohort, created = self._assign(user_id, day)
        if created and self._emitter is not None:
            self._emitter.track(
                COHORT_EVENT,
                {
                    "identity": user_id,
                    "cohortDate": cohort.isoformat(),
                    "cohortWeek": iso_week_label(cohort),
                },
            )
        return cohort

    def record_activity(
        self,
        user_id: str,
        day: str | date | datetime | None = None,
        events: int = 0,
        sessions: int = 0,
        duration: float = 0.0,
    ) -> UserActivityRecord | None:
        """
        Add a user's activity to their record for ``day`` (today when omitted).

        Returns:
            The merged record for that day, or None for an unusable date
        """
        try:
            day = parse_date(day) if day is not None else self._today()
        except ValueError as e:
            logger.warning("Invalid activity date %r for %s: %s", day, user_id, e)
            return None

        record = self._merge(user_id, day, events, sessions, duration)
        if self._emitter is not None:
            self._emitter.track(
                ACTIVITY_EVENT,
                {
                    "identity": user_id,
                    "date": day.isoformat(),
                    "events": events,
                    "sessions": sessions,
                    "duration": duration,
                },
            )
        return record

    def ingest(self, events: Iterable[Event]) -> int:
        """
        Rebuild cohorts and activity from delivered events.

        Returns:
            Number of events applied
        """
        applied = 0
        for event in events:
            if event.name not in (COHORT_EVENT, ACTIVITY_EVENT):
                continue
            props = event.properties
            user_id = props.get("identity") or event.user_id
            if not user_id:
                continue
            try:
                if event.name == COHORT_EVENT:
                    self._assign(user_id, parse_date(props.get("cohortDate") or ""))
                else:
                    self._merge(
                        user_id,
                        parse_date(props.get("date") or ms_to_date(event.timestamp)),
                        int(props.get("events") or 0),
                        int(props.get("sessions") or 0),
                        float(props.get("duration") or 0.0),
                    )
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed %s event: %s", event.name, e)
                continue
            applied += 1

        logger.debug("Ingested %d cohort events", applied)
        return applied

    def _assign(self, user_id: str, day: date) -> tuple[date, bool]:
        cohort = week_start(day)
        with self._lock:
            existing = self._cohorts.get(user_id)
            if existing is not None:
                return existing, False
            self._cohorts[user_id] = cohort
        return cohort, True

    def _merge(
        self, user_id: str, day: date, events: int, sessions: int, duration: float
    ) -> UserActivityRecord:
        with self._lock:
            days = self._activity[user_id]
            current = days.get(day)
            if current is None:
                current = UserActivityRecord(user_id=user_id, day=day)
            merged = current.model_copy(
                update={
                    "events": current.events + events,
                    "sessions": current.sessions + sessions,
                    "duration": current.duration + duration,
                }
            )
            days[day] = merged
            return merged

    def _today(self) -> date:
        return ms_to_date(self._clock())

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_user_cohort(self, user_id: str) -> date | None:
        with self._lock:
            return self._cohorts.get(user_id)

    def all_cohorts(self) -> list[date]:
        """Distinct cohort start dates, ascending."""
        with self._lock:
            return sorted(set(self._cohorts.values()))

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(
        self, start: str | date | datetime, end: str | date | datetime
    ) -> CohortAnalysisResult:
        """
        Cohorts from the week containing ``start`` through ``end``, 7 days apart.

        Cohorts without members are included with zero values.
        """
        try:
            first, last = week_start(parse_date(start)), parse_date(end)
        except ValueError as e:
            logger.warning("Invalid cohort range %r..%r: %s", start, end, e)
            return CohortAnalysisResult()

        with self._lock:
            members: dict[date, list[str]] = defaultdict(list)
            for user_id, cohort in self._cohorts.items():
                members[cohort].append(user_id)
            activity = {
                user_id: list(days.values()) for user_id, days in self._activity.items()
            }

        cohorts = []
        bucket = first
        while bucket <= last:
            users = members.get(bucket, [])
            cohorts.append(
                CohortData(
                    cohort_date=bucket,
                    cohort_week=iso_week_label(bucket),
                    total_users=len(users),
                    retention=_retention(bucket, users, activity),
                    engagement=_engagement(users, activity),
                )
            )
            bucket += timedelta(days=7)

        return CohortAnalysisResult(cohorts=cohorts, summary=summarize(cohorts))


def _retention(
    cohort: date, users: list[str], activity: dict[str, list[UserActivityRecord]]
) -> CohortRetention:
    if not users:
        return CohortRetention()
    retained = {}
    for days in RETENTION_HORIZONS:
        threshold = cohort + timedelta(days=days)
        count = sum(
            1
            for user_id in users
            if any(r.day >= threshold and r.is_active for r in activity.get(user_id, []))
        )
        retained[f"day{days}"] = count / len(users) * 100
    return CohortRetention(**retained)


def _engagement(
    users: list[str], activity: dict[str, list[UserActivityRecord]]
) -> CohortEngagement:
    records = [activity[u] for u in users if activity.get(u)]
    if not records:
        return CohortEngagement()
    active = len(records)
    return CohortEngagement(
        average_sessions=sum(r.sessions for rs in records for r in rs) / active,
        average_events=sum(r.events for rs in records for r in rs) / active,
        average_session_duration=sum(r.duration for rs in records for r in rs) / active,
    )


def summarize(cohorts: list[CohortData]) -> CohortSummary:
    """Average retention, best/worst cohort by day-7 retention, and trend."""
    if not cohorts:
        return CohortSummary()

    count = len(cohorts)
    average = AverageRetention(
        day1=sum(c.retention.day1 for c in cohorts) / count,
        day7=sum(c.retention.day7 for c in cohorts) / count,
        day30=sum(c.retention.day30 for c in cohorts) / count,
    )
    ranked = sorted(cohorts, key=lambda c: c.retention.day7, reverse=True)

    return CohortSummary(
        average_retention=average,
        best_performing_cohort=ranked[0].cohort_date,
        worst_performing_cohort=ranked[-1].cohort_date,
        trend=classify_trend(cohorts),
    )


def classify_trend(cohorts: list[CohortData]) -> Trend:
    """
    Compare mean day-7 retention of the last 3 cohorts with the 3 before.

    Either window holding fewer than 2 cohorts is reported as stable.
    """
    recent = cohorts[-TREND_WINDOW:]
    older = cohorts[-2 * TREND_WINDOW : -TREND_WINDOW]
    if len(recent) < 2 or len(older) < 2:
        return Trend.STABLE

    recent_avg = sum(c.retention.day7 for c in recent) / len(recent)
    older_avg = sum(c.retention.day7 for c in older) / len(older)
    if recent_avg > older_avg * (1 + TREND_THRESHOLD):
        return Trend.IMPROVING
    if recent_avg < older_avg * (1 - TREND_THRESHOLD):
        return Trend.DECLINING
    return Trend.STABLE
