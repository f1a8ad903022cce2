from __future__ import annotations

import logging

from pydantic import ValidationError

from .schemas import SafetyPlan
from .storage import SAFETY_PLAN_KEY, KeyValueStore, load_json, save_json

logger = logging.getLogger(__name__)


class SafetyPlanService:
    """The user's safety plan, stored as one document.

    Mood entries copy warning signs and coping strategies by value, so
    editing the plan never rewrites past entries.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.plan = SafetyPlan()
        self.load()

    def load(self) -> SafetyPlan:
        raw = load_json(self.store, SAFETY_PLAN_KEY, dict)
        try:
            self.plan = SafetyPlan.model_validate(raw or {})
        except ValidationError:
            logger.warning("Stored safety plan is invalid; using an empty plan")
            self.plan = SafetyPlan()
        return self.plan

    def get(self) -> SafetyPlan:
        return self.plan

    def update(self, plan: SafetyPlan) -> SafetyPlan:
        self.plan = plan
        save_json(self.store, SAFETY_PLAN_KEY, plan.to_store())
        return plan
