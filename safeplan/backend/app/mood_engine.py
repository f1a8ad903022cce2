from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .schemas import CrisisAlert, MoodEntry, MoodTrend
from .storage import (
    CRISIS_ALERTS_KEY,
    MOOD_ENTRIES_KEY,
    KeyValueStore,
    load_json,
    remove_key,
    save_json,
)
from .timekeeping import Clock, TimestampIdFactory, epoch_millis

logger = logging.getLogger(__name__)

MAX_MOOD_ENTRIES = 100
MAX_CRISIS_ALERTS = 100
MIN_PATTERN_ENTRIES = 3
PATTERN_WINDOW = 7
TREND_WINDOW = 14
ACTIVE_ALERT_WINDOW_MS = 24 * 60 * 60 * 1000
MOOD_MIN = 1
MOOD_MAX = 10

SEVERE_ACTIONS = [
    "Contact emergency services or crisis hotline immediately",
    "Reach out to your support contacts",
    "Go to a safe place from your safety plan",
]
MODERATE_ACTIONS = [
    "Review your coping strategies",
    "Consider contacting a support person",
    "Use grounding techniques",
]
MILD_ACTIONS = [
    "Practice self-care activities",
    "Review your reasons for living",
    "Consider scheduling time with supportive people",
]

PatternMatch = Tuple[str, List[str], List[str]]


def average_mood(entries: Sequence[MoodEntry]) -> float:
    return sum(entry.mood for entry in entries) / len(entries)


def calculate_trend(entries: Sequence[MoodEntry]) -> str:
    if len(entries) < 3:
        return "stable"
    recent = entries[:3]
    older = entries[3:6]
    recent_avg = average_mood(recent)
    older_avg = average_mood(older) if older else recent_avg
    difference = recent_avg - older_avg
    if difference > 0.5:
        return "improving"
    if difference < -0.5:
        return "declining"
    return "stable"


def escalate(risk_level: str) -> str:
    return "moderate" if risk_level == "low" else "high"


def match_crisis_pattern(entries: Sequence[MoodEntry]) -> Optional[PatternMatch]:
    """First matching rule wins: severe, then moderate, then mild."""
    if len(entries) < MIN_PATTERN_ENTRIES:
        return None
    recent = entries[:PATTERN_WINDOW]
    recent_avg = average_mood(recent)
    latest = entries[0]

    if latest.mood <= 3 or (recent_avg <= 4 and latest.mood <= 4):
        return "severe", ["Very low mood detected"], list(SEVERE_ACTIONS)
    if latest.mood <= 5 and latest.warning_signs_present:
        return "moderate", ["Low mood with warning signs present"], list(MODERATE_ACTIONS)
    if recent_avg < 6 and len(recent) >= 3 and calculate_trend(recent) == "declining":
        return "mild", ["Declining mood trend detected"], list(MILD_ACTIONS)
    return None


def assess_mood_trend(entries: Sequence[MoodEntry]) -> MoodTrend:
    if not entries:
        return MoodTrend(average_mood=5, trend="stable", risk_level="low", pattern_insights=[])

    window = entries[:TREND_WINDOW]
    mean = average_mood(window)
    trend = calculate_trend(window)
    risk_level = "low"
    insights: List[str] = []

    if mean <= 4:
        risk_level = "high"
        insights.append("Your mood has been consistently low recently")
    elif mean <= 6:
        risk_level = "moderate"
        insights.append("Your mood has been below average")

    if trend == "declining":
        risk_level = escalate(risk_level)
        insights.append("Your mood trend is declining")
    elif trend == "improving":
        insights.append("Your mood is improving - keep up the good work!")

    warning_sign_count = sum(len(entry.warning_signs_present) for entry in window)
    if warning_sign_count > len(window):
        risk_level = escalate(risk_level)
        insights.append("You've been experiencing multiple warning signs")

    return MoodTrend(average_mood=mean, trend=trend, risk_level=risk_level, pattern_insights=insights)


def validate_mood(mood: int) -> int:
    if isinstance(mood, bool) or not isinstance(mood, int):
        raise ValueError("Mood must be a whole number.")
    if mood < MOOD_MIN or mood > MOOD_MAX:
        raise ValueError(f"Mood must be between {MOOD_MIN} and {MOOD_MAX}.")
    return mood


class MoodTrackingEngine:
    """Owns the mood log and the crisis-alert log.

    Both logs are kept newest first, capped, and rewritten whole on every
    change. A failed write is logged and the in-memory log stays authoritative.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Optional[Clock] = None,
        id_factory: Optional[Callable[..., str]] = None,
    ) -> None:
        self.store = store
        self.clock = clock or datetime.now
        self.new_id = id_factory or TimestampIdFactory()
        self.mood_entries: List[MoodEntry] = []
        self.crisis_alerts: List[CrisisAlert] = []
        self._listeners: List[Callable[[], None]] = []
        self.load()

    def load(self) -> None:
        self.mood_entries = self._load_records(MOOD_ENTRIES_KEY, MoodEntry)
        self.crisis_alerts = self._load_records(CRISIS_ALERTS_KEY, CrisisAlert)

    def _load_records(self, key: str, model):
        raw = load_json(self.store, key, list)
        if not isinstance(raw, list):
            logger.warning("Stored %s is not a list; starting empty", key)
            return []
        try:
            return [model.model_validate(item) for item in raw]
        except ValidationError:
            logger.warning("Stored %s failed validation; starting empty", key)
            return []

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in self._listeners:
            listener()

    def add_mood_entry(
        self,
        mood: int,
        notes: Optional[str] = None,
        warning_signs_present: Optional[List[str]] = None,
        coping_strategies_used: Optional[List[str]] = None,
        photo_uri: Optional[str] = None,
    ) -> MoodEntry:
        validate_mood(mood)
        now = self.clock()
        timestamp = epoch_millis(now)
        entry = MoodEntry(
            id=self.new_id(timestamp),
            date=now.date().isoformat(),
            mood=mood,
            notes=notes,
            warning_signs_present=list(warning_signs_present or []),
            coping_strategies_used=list(coping_strategies_used or []),
            timestamp=timestamp,
            photo_uri=photo_uri,
        )
        self.mood_entries = [entry, *self.mood_entries][:MAX_MOOD_ENTRIES]
        self._save_entries()
        alert = self.check_for_crisis_patterns(self.mood_entries)
        if alert:
            logger.info("Crisis alert %s raised at level %s", alert.id, alert.level)
        self._notify()
        return entry

    def check_for_crisis_patterns(self, entries: Sequence[MoodEntry]) -> Optional[CrisisAlert]:
        match = match_crisis_pattern(entries)
        if match is None:
            return None
        level, triggers, actions = match
        timestamp = epoch_millis(self.clock())
        alert = CrisisAlert(
            id=self.new_id(timestamp),
            level=level,
            timestamp=timestamp,
            triggers=triggers,
            recommended_actions=actions,
            emergency_contacts_notified=False,
        )
        self.crisis_alerts = [alert, *self.crisis_alerts][:MAX_CRISIS_ALERTS]
        self._save_alerts()
        return alert

    def get_mood_trend(self) -> MoodTrend:
        return assess_mood_trend(self.mood_entries)

    def get_today_entry(self) -> Optional[MoodEntry]:
        today = self.clock().date().isoformat()
        for entry in self.mood_entries:
            if entry.date == today:
                return entry
        return None

    def get_active_alerts(self) -> List[CrisisAlert]:
        cutoff = epoch_millis(self.clock()) - ACTIVE_ALERT_WINDOW_MS
        return [alert for alert in self.crisis_alerts if alert.timestamp > cutoff]

    def dismiss_alert(self, alert_id: str) -> bool:
        remaining = [alert for alert in self.crisis_alerts if alert.id != alert_id]
        if len(remaining) == len(self.crisis_alerts):
            return False
        self.crisis_alerts = remaining
        self._save_alerts()
        self._notify()
        return True

    def clear(self) -> None:
        """Drop the mood history together with every alert derived from it."""
        self.mood_entries = []
        self.crisis_alerts = []
        remove_key(self.store, MOOD_ENTRIES_KEY)
        remove_key(self.store, CRISIS_ALERTS_KEY)
        self._notify()

    def _save_entries(self) -> None:
        save_json(self.store, MOOD_ENTRIES_KEY, [entry.to_store() for entry in self.mood_entries])

    def _save_alerts(self) -> None:
        save_json(self.store, CRISIS_ALERTS_KEY, [alert.to_store() for alert in self.crisis_alerts])
