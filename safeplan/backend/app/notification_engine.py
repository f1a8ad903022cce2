from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

from pydantic import ValidationError

from .mood_engine import MoodTrackingEngine
from .schemas import (
    NotificationAnalytics,
    NotificationPreferences,
    NotificationPreferencesUpdate,
    SmartNotification,
    TypeCounters,
)
from .storage import (
    NOTIFICATION_ANALYTICS_KEY,
    NOTIFICATION_HISTORY_KEY,
    NOTIFICATION_PREFERENCES_KEY,
    KeyValueStore,
    load_json,
    save_json,
)
from .timekeeping import Clock, TimestampIdFactory, epoch_millis, parse_time_of_day, seconds_until, whole_days_between

logger = logging.getLogger(__name__)

MAX_HISTORY = 100
INACTIVITY_DAYS = 2
NO_ENTRIES_DAYS = 999
ENCOURAGEMENT_PROBABILITY = 0.3
SAFETY_PLAN_REVIEW_HOUR = 10
SAFETY_PLAN_REVIEW_MINUTE = 0
REVIEW_INTERVAL_DAYS = {"weekly": 7, "monthly": 30}
PATTERN_SUGGESTED_ACTIONS = [
    "Review your coping strategies",
    "Reach out to a support person",
    "Practice self-care",
]
DEEP_LINKS = {
    "daily-checkin": "mood",
    "mood-reminder": "mood",
    "crisis-support": "crisis",
    "pattern-alert": "crisis",
    "safety-plan-review": "safety-plan",
}


class DeliveryError(Exception):
    """Raised by a delivery service that could not hand a notification to the platform."""


class NotificationDelivery(Protocol):
    def get_permission_status(self) -> str:
        ...

    def request_permission(self) -> str:
        ...

    def schedule_recurring(
        self,
        notification_id: str,
        content: Dict[str, Any],
        hour: int,
        minute: int,
        interval_days: Optional[int] = None,
    ) -> None:
        ...

    def send_immediate(self, notification_id: str, content: Dict[str, Any]) -> None:
        ...

    def cancel_all_scheduled(self) -> None:
        ...


class LoggingDelivery:
    """Delivery stand-in for servers without a push channel: records and logs requests."""

    def __init__(self, grant_permission: bool = True, clock: Optional[Clock] = None) -> None:
        self.grant_permission = grant_permission
        self.clock = clock or datetime.now
        self.permission_status = "undetermined"
        self.scheduled: Dict[str, Dict[str, Any]] = {}
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def get_permission_status(self) -> str:
        return self.permission_status

    def request_permission(self) -> str:
        self.permission_status = "granted" if self.grant_permission else "denied"
        return self.permission_status

    def schedule_recurring(self, notification_id, content, hour, minute, interval_days=None) -> None:
        self.scheduled[notification_id] = {
            "content": content,
            "hour": hour,
            "minute": minute,
            "interval_days": interval_days,
        }
        logger.info(
            "Scheduled %s at %02d:%02d (first in %ss, every %s day(s))",
            notification_id,
            hour,
            minute,
            seconds_until(hour, minute, self.clock()),
            interval_days or 1,
        )

    def send_immediate(self, notification_id, content) -> None:
        self.sent.append((notification_id, content))
        logger.info("Delivered %s: %s", notification_id, content.get("title"))

    def cancel_all_scheduled(self) -> None:
        self.scheduled.clear()


@dataclass
class RecurringSchedule:
    hour: int
    minute: int
    interval_days: Optional[int] = None


def notification_content(notification: SmartNotification) -> Dict[str, Any]:
    return {
        "title": notification.title,
        "body": notification.body,
        "data": {"type": notification.type, "priority": notification.priority, **notification.data},
    }


def derive_recurring_schedule(
    preferences: NotificationPreferences,
    timestamp: int,
) -> List[Tuple[SmartNotification, RecurringSchedule]]:
    """Turn preferences into concrete schedule requests. Raises ValueError on a bad time."""
    requests: List[Tuple[SmartNotification, RecurringSchedule]] = []
    if preferences.daily_check_in.enabled:
        hour, minute = parse_time_of_day(preferences.daily_check_in.time)
        requests.append((
            SmartNotification(
                id="daily-checkin",
                type="daily-checkin",
                title="Daily Check-in",
                body="How are you feeling today? Take a moment to track your mood.",
                priority="normal",
                timestamp=timestamp,
            ),
            RecurringSchedule(hour=hour, minute=minute),
        ))
    if preferences.mood_reminders.enabled:
        for time_of_day in preferences.mood_reminders.times:
            hour, minute = parse_time_of_day(time_of_day)
            requests.append((
                SmartNotification(
                    id=f"mood-reminder-{time_of_day}",
                    type="mood-reminder",
                    title="Mood Check",
                    body="A quick mood check can help you stay aware of your mental health.",
                    priority="normal",
                    timestamp=timestamp,
                ),
                RecurringSchedule(hour=hour, minute=minute),
            ))
    if preferences.safety_plan_reminders.enabled:
        requests.append((
            SmartNotification(
                id="safety-plan-review",
                type="safety-plan-review",
                title="Safety Plan Review",
                body="Take a few minutes to review and update your safety plan.",
                priority="normal",
                timestamp=timestamp,
            ),
            RecurringSchedule(
                hour=SAFETY_PLAN_REVIEW_HOUR,
                minute=SAFETY_PLAN_REVIEW_MINUTE,
                interval_days=REVIEW_INTERVAL_DAYS[preferences.safety_plan_reminders.review_frequency],
            ),
        ))
    return requests


def deep_link_for(data: Optional[Dict[str, Any]]) -> str:
    notification_type = (data or {}).get("type")
    return DEEP_LINKS.get(notification_type, "home")


class NotificationTriggerEvaluator:
    """Decides when to notify, talks to the delivery service and keeps history and analytics."""

    def __init__(
        self,
        store: KeyValueStore,
        delivery: NotificationDelivery,
        mood_engine: MoodTrackingEngine,
        clock: Optional[Clock] = None,
        random_source: Optional[Callable[[], float]] = None,
        id_factory: Optional[Callable[..., str]] = None,
    ) -> None:
        self.store = store
        self.delivery = delivery
        self.mood_engine = mood_engine
        self.clock = clock or datetime.now
        self.random_source = random_source or random.random
        self.new_id = id_factory or TimestampIdFactory()
        self.preferences = NotificationPreferences()
        self.notification_history: List[SmartNotification] = []
        self.analytics = NotificationAnalytics()
        self.permission_status = "undetermined"
        self.load()

    def load(self) -> None:
        raw_preferences = load_json(self.store, NOTIFICATION_PREFERENCES_KEY, dict)
        try:
            self.preferences = NotificationPreferences.model_validate(raw_preferences or {})
        except ValidationError:
            logger.warning("Stored notification preferences are invalid; using defaults")
            self.preferences = NotificationPreferences()

        raw_history = load_json(self.store, NOTIFICATION_HISTORY_KEY, list)
        try:
            self.notification_history = [SmartNotification.model_validate(item) for item in raw_history]
        except (TypeError, ValidationError):
            logger.warning("Stored notification history is invalid; starting empty")
            self.notification_history = []

        raw_analytics = load_json(self.store, NOTIFICATION_ANALYTICS_KEY, dict)
        try:
            self.analytics = NotificationAnalytics.model_validate(raw_analytics or {})
        except ValidationError:
            logger.warning("Stored notification analytics are invalid; starting from zero")
            self.analytics = NotificationAnalytics()

    def initialize(self) -> str:
        try:
            status = self.delivery.get_permission_status()
            if status != "granted":
                status = self.delivery.request_permission()
        except DeliveryError:
            logger.exception("Error initializing notifications")
            return self.permission_status
        self.permission_status = status
        if status == "granted":
            self.schedule_recurring_notifications()
        else:
            logger.info("Notification permission %s; sending disabled", status)
        return status

    def update_preferences(
        self,
        update: Union[NotificationPreferencesUpdate, Dict[str, Any]],
    ) -> NotificationPreferences:
        if not isinstance(update, NotificationPreferencesUpdate):
            update = NotificationPreferencesUpdate.model_validate(update)
        merged = self.preferences.model_dump()
        merged.update(update.model_dump(exclude_none=True))
        preferences = NotificationPreferences.model_validate(merged)
        derive_recurring_schedule(preferences, epoch_millis(self.clock()))

        self.preferences = preferences
        save_json(self.store, NOTIFICATION_PREFERENCES_KEY, preferences.to_store())
        if preferences.enabled:
            self.schedule_recurring_notifications()
        else:
            self._cancel_all_scheduled()
        return preferences

    def schedule_recurring_notifications(self) -> int:
        if not self.preferences.enabled or self.permission_status != "granted":
            return 0
        self._cancel_all_scheduled()
        scheduled = 0
        for notification, schedule in derive_recurring_schedule(self.preferences, epoch_millis(self.clock())):
            try:
                self.delivery.schedule_recurring(
                    notification.id,
                    notification_content(notification),
                    schedule.hour,
                    schedule.minute,
                    schedule.interval_days,
                )
            except DeliveryError:
                logger.exception("Error scheduling notification %s", notification.id)
                continue
            self._record_history(notification)
            scheduled += 1
        self._save_history()
        return scheduled

    def _cancel_all_scheduled(self) -> None:
        try:
            self.delivery.cancel_all_scheduled()
        except DeliveryError:
            logger.exception("Error cancelling scheduled notifications")

    def check_for_smart_triggers(self) -> List[SmartNotification]:
        if not self.preferences.enabled:
            return []
        preferences = self.preferences
        trend = self.mood_engine.get_mood_trend()
        entries = self.mood_engine.mood_entries
        now = epoch_millis(self.clock())
        emitted: List[SmartNotification] = []

        if preferences.mood_reminders.enabled:
            days_since_entry = whole_days_between(entries[0].timestamp, now) if entries else NO_ENTRIES_DAYS
            if days_since_entry >= INACTIVITY_DAYS:
                emitted.append(SmartNotification(
                    id=self.new_id(now, "inactivity-"),
                    type="mood-reminder",
                    title="We miss you!",
                    body=f"You haven't checked in for {days_since_entry} days. How are you feeling?",
                    priority="normal",
                    timestamp=now,
                ))

        if preferences.crisis_support.enabled and preferences.crisis_support.proactive_reminders:
            if trend.trend == "declining" and trend.risk_level != "low":
                emitted.append(SmartNotification(
                    id=self.new_id(now, "pattern-alert-"),
                    type="pattern-alert",
                    title="Gentle Reminder",
                    body=(
                        "Your mood has been declining lately. "
                        "Remember, you have tools and people who care about you."
                    ),
                    priority="high",
                    data={
                        "moodTrend": trend.trend,
                        "riskLevel": trend.risk_level,
                        "suggestedActions": list(PATTERN_SUGGESTED_ACTIONS),
                    },
                    timestamp=now,
                ))

        # One draw per evaluation; fires on roughly 30% of improving checks.
        if preferences.encouragement_messages.enabled and trend.trend == "improving":
            if self.random_source() < ENCOURAGEMENT_PROBABILITY:
                emitted.append(SmartNotification(
                    id=self.new_id(now, "encouragement-"),
                    type="encouragement",
                    title="Great Progress!",
                    body="Your mood has been improving. Keep up the great work with your self-care!",
                    priority="low",
                    timestamp=now,
                ))

        return [notification for notification in emitted if self.send_smart_notification(notification)]

    def send_smart_notification(self, notification: SmartNotification) -> bool:
        if self.permission_status != "granted":
            return False
        try:
            self.delivery.send_immediate(notification.id, notification_content(notification))
        except DeliveryError:
            logger.exception("Error sending smart notification %s", notification.id)
            return False

        counters = self.analytics.type_breakdown.setdefault(notification.type, TypeCounters())
        counters.sent += 1
        self.analytics.total_sent += 1
        self._record_history(notification.model_copy(update={"sent": True}))
        self._save_analytics()
        self._save_history()
        logger.info("Sent %s notification %s", notification.type, notification.id)
        return True

    def track_notification_opened(self, notification_id: str) -> Optional[SmartNotification]:
        notification = next((item for item in self.notification_history if item.id == notification_id), None)
        if notification is None:
            return None
        self.analytics.total_opened += 1
        if self.analytics.total_sent:
            self.analytics.open_rate = self.analytics.total_opened / self.analytics.total_sent * 100
        counters = self.analytics.type_breakdown.setdefault(notification.type, TypeCounters())
        counters.opened += 1
        self._save_analytics()
        return notification

    def handle_notification_response(self, notification_id: str, data: Optional[Dict[str, Any]] = None) -> str:
        self.track_notification_opened(notification_id)
        return deep_link_for(data)

    def handle_notification_received(self, notification: Dict[str, Any]) -> None:
        logger.info("Notification received in foreground: %s", notification.get("id"))

    def test_notification(self) -> bool:
        now = epoch_millis(self.clock())
        return self.send_smart_notification(SmartNotification(
            id=self.new_id(now, "test-"),
            type="encouragement",
            title="Test Notification",
            body="This is a test notification to verify the system is working.",
            priority="normal",
            timestamp=now,
        ))

    def _record_history(self, notification: SmartNotification) -> None:
        self.notification_history = [notification, *self.notification_history][:MAX_HISTORY]

    def _save_history(self) -> None:
        save_json(self.store, NOTIFICATION_HISTORY_KEY, [item.to_store() for item in self.notification_history])

    def _save_analytics(self) -> None:
        save_json(self.store, NOTIFICATION_ANALYTICS_KEY, self.analytics.to_store())
