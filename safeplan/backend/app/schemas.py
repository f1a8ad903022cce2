from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Trend = Literal["improving", "declining", "stable"]
RiskLevel = Literal["low", "moderate", "high"]
AlertLevel = Literal["mild", "moderate", "severe"]
NotificationType = Literal[
    "daily-checkin",
    "mood-reminder",
    "crisis-support",
    "safety-plan-review",
    "encouragement",
    "pattern-alert",
]
Priority = Literal["low", "normal", "high", "critical"]
PermissionStatus = Literal["granted", "denied", "undetermined"]


class CamelModel(BaseModel):
    """Stored and served with the camelCase field names the mobile client reads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class MoodEntry(CamelModel):
    id: str
    date: str
    mood: int
    notes: Optional[str] = None
    warning_signs_present: List[str] = Field(default_factory=list)
    coping_strategies_used: List[str] = Field(default_factory=list)
    timestamp: int
    photo_uri: Optional[str] = None


class CrisisAlert(CamelModel):
    id: str
    level: AlertLevel
    timestamp: int
    triggers: List[str]
    recommended_actions: List[str]
    emergency_contacts_notified: bool = False


class MoodTrend(CamelModel):
    average_mood: float
    trend: Trend
    risk_level: RiskLevel
    pattern_insights: List[str] = Field(default_factory=list)


class DailyCheckInPreferences(CamelModel):
    enabled: bool = True
    time: str = "19:00"


class MoodReminderPreferences(CamelModel):
    enabled: bool = True
    frequency: Literal["daily", "twice-daily", "weekly"] = "daily"
    times: List[str] = Field(default_factory=lambda: ["10:00", "18:00"])


class CrisisSupportPreferences(CamelModel):
    enabled: bool = True
    proactive_reminders: bool = True


class SafetyPlanReminderPreferences(CamelModel):
    enabled: bool = True
    review_frequency: Literal["weekly", "monthly"] = "weekly"


class EncouragementPreferences(CamelModel):
    enabled: bool = True
    frequency: Literal["daily", "weekly"] = "daily"


class NotificationPreferences(CamelModel):
    enabled: bool = True
    daily_check_in: DailyCheckInPreferences = Field(default_factory=DailyCheckInPreferences)
    mood_reminders: MoodReminderPreferences = Field(default_factory=MoodReminderPreferences)
    crisis_support: CrisisSupportPreferences = Field(default_factory=CrisisSupportPreferences)
    safety_plan_reminders: SafetyPlanReminderPreferences = Field(default_factory=SafetyPlanReminderPreferences)
    encouragement_messages: EncouragementPreferences = Field(default_factory=EncouragementPreferences)


class NotificationPreferencesUpdate(CamelModel):
    """Partial update; each section given replaces the stored section whole."""

    enabled: Optional[bool] = None
    daily_check_in: Optional[DailyCheckInPreferences] = None
    mood_reminders: Optional[MoodReminderPreferences] = None
    crisis_support: Optional[CrisisSupportPreferences] = None
    safety_plan_reminders: Optional[SafetyPlanReminderPreferences] = None
    encouragement_messages: Optional[EncouragementPreferences] = None


class SmartNotification(CamelModel):
    id: str
    type: NotificationType
    title: str
    body: str
    scheduled_time: Optional[int] = None
    priority: Priority = "normal"
    data: Dict[str, Any] = Field(default_factory=dict)
    sent: bool = False
    timestamp: int


class TypeCounters(CamelModel):
    sent: int = 0
    opened: int = 0


class NotificationAnalytics(CamelModel):
    total_sent: int = 0
    total_opened: int = 0
    open_rate: float = 0.0
    type_breakdown: Dict[str, TypeCounters] = Field(default_factory=dict)
    effectiveness_score: float = 0.0


class Contact(CamelModel):
    name: str
    phone: Optional[str] = None


class SafetyPlan(CamelModel):
    warning_signs: List[str] = Field(default_factory=list)
    coping_strategies: List[str] = Field(default_factory=list)
    support_contacts: List[Contact] = Field(default_factory=list)
    safe_places: List[str] = Field(default_factory=list)
    reasons_for_living: List[str] = Field(default_factory=list)


class MoodEntryCreate(CamelModel):
    mood: int
    notes: Optional[str] = None
    warning_signs_present: List[str] = Field(default_factory=list)
    coping_strategies_used: List[str] = Field(default_factory=list)
    photo_uri: Optional[str] = None


class NotificationOpenedRequest(CamelModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class NotificationStatusResponse(CamelModel):
    permission_status: PermissionStatus
    enabled: bool
    scheduled: int
