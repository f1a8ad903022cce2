from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from .mood_engine import MoodTrackingEngine
from .notification_engine import LoggingDelivery, NotificationDelivery, NotificationTriggerEvaluator
from .safety_plan import SafetyPlanService
from .schemas import (
    CrisisAlert,
    MoodEntry,
    MoodEntryCreate,
    MoodTrend,
    NotificationAnalytics,
    NotificationOpenedRequest,
    NotificationPreferences,
    NotificationPreferencesUpdate,
    NotificationStatusResponse,
    SafetyPlan,
    SmartNotification,
)
from .storage import KeyValueStore, SqlKeyValueStore
from .timekeeping import Clock

APP_VERSION = "1.0.0"
REPO_ROOT = Path(__file__).resolve().parents[3]
load_dotenv(REPO_ROOT / ".env")

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY


def resolve_db_path() -> str:
    db_env = (os.getenv("SAFEPLAN_DB_PATH") or os.getenv("DB_PATH") or "").strip()
    db_path = Path(db_env) if db_env else (REPO_ROOT / "safeplan.db")
    if not db_path.is_absolute():
        db_path = REPO_ROOT / db_path
    return str(db_path)


def is_dev_mode() -> bool:
    return env_flag("SAFEPLAN_DEV_MODE") or env_flag("DEV_MODE")


def configure_logging() -> None:
    level = os.getenv("SAFEPLAN_LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


DB_PATH = resolve_db_path()
DATABASE_URL = f"sqlite:///{DB_PATH}"


@dataclass
class Services:
    store: KeyValueStore
    mood: MoodTrackingEngine
    notifications: NotificationTriggerEvaluator
    safety_plan: SafetyPlanService


def build_services(
    store: KeyValueStore,
    delivery: Optional[NotificationDelivery] = None,
    clock: Optional[Clock] = None,
    random_source: Optional[Callable[[], float]] = None,
) -> Services:
    """Wire the engines so every mood or alert change re-runs the notification triggers."""
    mood = MoodTrackingEngine(store, clock=clock)
    notifications = NotificationTriggerEvaluator(
        store,
        delivery or LoggingDelivery(grant_permission=env_flag("SAFEPLAN_AUTO_GRANT_NOTIFICATIONS", True)),
        mood,
        clock=clock,
        random_source=random_source,
    )
    mood.add_listener(notifications.check_for_smart_triggers)
    return Services(
        store=store,
        mood=mood,
        notifications=notifications,
        safety_plan=SafetyPlanService(store),
    )


app = FastAPI(title="SafePlan API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.on_event("startup")
def on_startup() -> None:
    configure_logging()
    store = SqlKeyValueStore(DATABASE_URL)
    store.create_schema()
    services = build_services(store)
    services.notifications.initialize()
    app.state.services = services
    logger.info("SafePlan API %s using %s", APP_VERSION, DB_PATH)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


@app.get("/health")
def health(services: Services = Depends(get_services)) -> dict:
    db_status = "ok"
    ping = getattr(services.store, "ping", None)
    if ping is not None and not ping():
        db_status = "error"
    return {
        "status": "ok",
        "version": APP_VERSION,
        "db": db_status,
        "dev_mode": is_dev_mode(),
    }


@app.get("/meta")
def meta() -> dict:
    return {"version": APP_VERSION, "dev_mode": is_dev_mode(), "db_path": DB_PATH}


@app.get("/safety/resources")
def safety_resources() -> dict:
    return {
        "resources": crisis_resources(),
        "disclaimer": "This app does not replace professional care. If you are in danger, seek help now.",
    }


def crisis_resources() -> List[str]:
    return [
        "If you feel unsafe, contact local emergency services.",
        "Reach out to a trusted person or local crisis line.",
        "If you are in the U.S., you can call or text 988 for immediate support.",
    ]


@app.post("/mood", response_model=MoodEntry)
def create_mood_entry(payload: MoodEntryCreate, services: Services = Depends(get_services)) -> MoodEntry:
    try:
        return services.mood.add_mood_entry(
            payload.mood,
            notes=payload.notes,
            warning_signs_present=payload.warning_signs_present,
            coping_strategies_used=payload.coping_strategies_used,
            photo_uri=payload.photo_uri,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/mood", response_model=List[MoodEntry])
def list_mood_entries(services: Services = Depends(get_services)) -> List[MoodEntry]:
    return services.mood.mood_entries


@app.get("/mood/today", response_model=Optional[MoodEntry])
def today_mood_entry(services: Services = Depends(get_services)) -> Optional[MoodEntry]:
    return services.mood.get_today_entry()


@app.delete("/mood")
def clear_mood_history(services: Services = Depends(get_services)) -> dict:
    services.mood.clear()
    return {"status": "cleared"}


@app.get("/mood/trend", response_model=MoodTrend)
def mood_trend(services: Services = Depends(get_services)) -> MoodTrend:
    return services.mood.get_mood_trend()


@app.get("/alerts", response_model=List[CrisisAlert])
def list_alerts(services: Services = Depends(get_services)) -> List[CrisisAlert]:
    return services.mood.crisis_alerts


@app.get("/alerts/active", response_model=List[CrisisAlert])
def active_alerts(services: Services = Depends(get_services)) -> List[CrisisAlert]:
    return services.mood.get_active_alerts()


@app.delete("/alerts/{alert_id}")
def dismiss_alert(alert_id: str, services: Services = Depends(get_services)) -> dict:
    if not services.mood.dismiss_alert(alert_id):
        return {"status": "ignored"}
    return {"status": "dismissed"}


@app.get("/notifications/preferences", response_model=NotificationPreferences)
def notification_preferences(services: Services = Depends(get_services)) -> NotificationPreferences:
    return services.notifications.preferences


@app.patch("/notifications/preferences", response_model=NotificationPreferences)
def update_notification_preferences(
    payload: NotificationPreferencesUpdate,
    services: Services = Depends(get_services),
) -> NotificationPreferences:
    try:
        return services.notifications.update_preferences(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/notifications/history", response_model=List[SmartNotification])
def notification_history(services: Services = Depends(get_services)) -> List[SmartNotification]:
    return services.notifications.notification_history


@app.get("/notifications/analytics", response_model=NotificationAnalytics)
def notification_analytics(services: Services = Depends(get_services)) -> NotificationAnalytics:
    return services.notifications.analytics


@app.get("/notifications/status", response_model=NotificationStatusResponse)
def notification_status(services: Services = Depends(get_services)) -> NotificationStatusResponse:
    evaluator = services.notifications
    scheduled = getattr(evaluator.delivery, "scheduled", {})
    return NotificationStatusResponse(
        permission_status=evaluator.permission_status,
        enabled=evaluator.preferences.enabled,
        scheduled=len(scheduled),
    )


@app.post("/notifications/test")
def send_test_notification(services: Services = Depends(get_services)) -> dict:
    sent = services.notifications.test_notification()
    return {"sent": sent, "permission_status": services.notifications.permission_status}


@app.post("/notifications/{notification_id}/opened")
def notification_opened(
    notification_id: str,
    payload: Optional[NotificationOpenedRequest] = None,
    services: Services = Depends(get_services),
) -> dict:
    data = payload.data if payload else {}
    route = services.notifications.handle_notification_response(notification_id, data)
    return {"route": route, "analytics": services.notifications.analytics.to_store()}


@app.get("/safety-plan", response_model=SafetyPlan)
def get_safety_plan(services: Services = Depends(get_services)) -> SafetyPlan:
    return services.safety_plan.get()


@app.put("/safety-plan", response_model=SafetyPlan)
def update_safety_plan(payload: SafetyPlan, services: Services = Depends(get_services)) -> SafetyPlan:
    return services.safety_plan.update(payload)
