import json
import os
import sys
import unittest
from datetime import timedelta

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..', '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from safeplan.backend.app import mood_engine
from safeplan.backend.app.mood_engine import MoodTrackingEngine
from safeplan.backend.app.schemas import CrisisAlert, MoodEntry
from safeplan.backend.app.storage import CRISIS_ALERTS_KEY, MOOD_ENTRIES_KEY
from safeplan.backend.tests.fakes import FailingStore, FixedClock, MemoryStore


def make_entries(moods, warning_signs=None):
    """Entries newest first, one per mood given."""
    warning_signs = warning_signs or {}
    return [
        MoodEntry(
            id=str(index),
            date="2026-03-10",
            mood=mood,
            warning_signs_present=warning_signs.get(index, []),
            timestamp=1_000_000 - index,
        )
        for index, mood in enumerate(moods)
    ]


class TrendTests(unittest.TestCase):
    def test_fewer_than_three_entries_is_stable(self):
        self.assertEqual(mood_engine.calculate_trend(make_entries([1, 9])), "stable")

    def test_half_point_difference_is_stable(self):
        self.assertEqual(mood_engine.calculate_trend(make_entries([2, 2, 2, 1, 2])), "stable")
        self.assertEqual(mood_engine.calculate_trend(make_entries([2, 2, 2, 2, 3])), "stable")

    def test_improving_and_declining(self):
        self.assertEqual(mood_engine.calculate_trend(make_entries([3, 3, 3, 2, 2])), "improving")
        self.assertEqual(mood_engine.calculate_trend(make_entries([4, 4, 4, 6, 6, 6])), "declining")

    def test_no_older_entries_is_stable(self):
        self.assertEqual(mood_engine.calculate_trend(make_entries([1, 5, 9])), "stable")


class MoodTrendTests(unittest.TestCase):
    def test_empty_log_returns_neutral_default(self):
        trend = mood_engine.assess_mood_trend([])
        self.assertEqual(trend.average_mood, 5)
        self.assertEqual(trend.trend, "stable")
        self.assertEqual(trend.risk_level, "low")
        self.assertEqual(trend.pattern_insights, [])

    def test_below_average_and_declining_escalates_to_high(self):
        trend = mood_engine.assess_mood_trend(make_entries([4, 4, 4, 6, 6, 6]))
        self.assertEqual(trend.average_mood, 5)
        self.assertEqual(trend.trend, "declining")
        self.assertEqual(trend.risk_level, "high")
        self.assertEqual(
            trend.pattern_insights,
            ["Your mood has been below average", "Your mood trend is declining"],
        )

    def test_consistently_low_is_high_risk(self):
        trend = mood_engine.assess_mood_trend(make_entries([3, 4, 3, 4]))
        self.assertEqual(trend.risk_level, "high")
        self.assertIn("Your mood has been consistently low recently", trend.pattern_insights)

    def test_many_warning_signs_escalate_risk(self):
        entries = make_entries([8, 8, 8], warning_signs={0: ["isolating", "not sleeping"], 1: ["racing thoughts", "irritable"]})
        trend = mood_engine.assess_mood_trend(entries)
        self.assertEqual(trend.risk_level, "moderate")
        self.assertEqual(trend.pattern_insights, ["You've been experiencing multiple warning signs"])

    def test_improving_adds_encouraging_insight_without_escalation(self):
        trend = mood_engine.assess_mood_trend(make_entries([8, 8, 8, 7, 7, 7]))
        self.assertEqual(trend.trend, "improving")
        self.assertEqual(trend.risk_level, "low")
        self.assertEqual(trend.pattern_insights, ["Your mood is improving - keep up the good work!"])

    def test_only_fourteen_entries_count(self):
        trend = mood_engine.assess_mood_trend(make_entries([8] * 14 + [1] * 20))
        self.assertEqual(trend.average_mood, 8)


class CrisisPatternTests(unittest.TestCase):
    def setUp(self):
        self.clock = FixedClock()
        self.store = MemoryStore()
        self.engine = MoodTrackingEngine(self.store, clock=self.clock)

    def test_fewer_than_three_entries_never_alert(self):
        self.assertIsNone(self.engine.check_for_crisis_patterns(make_entries([1, 1])))
        self.engine.add_mood_entry(1)
        self.engine.add_mood_entry(1)
        self.assertEqual(self.engine.crisis_alerts, [])

    def test_severe_takes_precedence_over_moderate(self):
        entries = make_entries([2, 8, 8], warning_signs={0: ["withdrawing"]})
        alert = self.engine.check_for_crisis_patterns(entries)
        self.assertEqual(len(self.engine.crisis_alerts), 1)
        self.assertEqual(alert.level, "severe")
        self.assertFalse(alert.emergency_contacts_notified)

    def test_low_average_with_latest_four_is_severe(self):
        alert = self.engine.check_for_crisis_patterns(make_entries([4, 4, 4, 4]))
        self.assertEqual(alert.level, "severe")

    def test_low_mood_with_warning_signs_is_moderate(self):
        entries = make_entries([5, 8, 8, 8], warning_signs={0: ["hopeless"]})
        alert = self.engine.check_for_crisis_patterns(entries)
        self.assertEqual(alert.level, "moderate")
        self.assertEqual(alert.triggers, ["Low mood with warning signs present"])
        self.assertEqual(alert.recommended_actions, mood_engine.MODERATE_ACTIONS)

    def test_declining_trend_is_mild(self):
        alert = self.engine.check_for_crisis_patterns(make_entries([5, 5, 5, 6, 6, 6]))
        self.assertEqual(alert.level, "mild")
        self.assertEqual(alert.triggers, ["Declining mood trend detected"])

    def test_steady_good_mood_creates_nothing(self):
        self.assertIsNone(self.engine.check_for_crisis_patterns(make_entries([8, 8, 8])))
        self.assertEqual(self.engine.crisis_alerts, [])

    def test_severe_scenario_through_add(self):
        for mood in [7, 6, 5, 4]:
            self.clock.advance(hours=1)
            self.engine.add_mood_entry(mood)
        before = len(self.engine.crisis_alerts)
        self.clock.advance(hours=1)
        self.engine.add_mood_entry(3)
        self.assertEqual(len(self.engine.crisis_alerts), before + 1)
        latest = self.engine.crisis_alerts[0]
        self.assertEqual(latest.level, "severe")
        self.assertEqual(latest.triggers, ["Very low mood detected"])
        stored = json.loads(self.store.get(CRISIS_ALERTS_KEY))
        self.assertEqual(stored[0]["level"], "severe")
        self.assertIn("recommendedActions", stored[0])


class MoodLogTests(unittest.TestCase):
    def setUp(self):
        self.clock = FixedClock()
        self.store = MemoryStore()
        self.engine = MoodTrackingEngine(self.store, clock=self.clock)

    def test_log_is_capped_and_newest_first(self):
        for index in range(105):
            self.clock.advance(seconds=1)
            self.engine.add_mood_entry((index % 10) + 1)
        entries = self.engine.mood_entries
        self.assertEqual(len(entries), 100)
        timestamps = [entry.timestamp for entry in entries]
        self.assertEqual(timestamps, sorted(timestamps, reverse=True))
        self.assertEqual(len(json.loads(self.store.get(MOOD_ENTRIES_KEY))), 100)
        self.assertLessEqual(len(self.engine.crisis_alerts), 100)

    def test_entry_fields(self):
        entry = self.engine.add_mood_entry(
            6,
            notes="walked the dog",
            warning_signs_present=["tired"],
            coping_strategies_used=["music"],
            photo_uri="file:///photos/1.jpg",
        )
        self.assertEqual(entry.date, "2026-03-10")
        self.assertEqual(entry.warning_signs_present, ["tired"])
        self.assertEqual(self.engine.get_today_entry(), entry)
        stored = json.loads(self.store.get(MOOD_ENTRIES_KEY))
        self.assertEqual(stored[0]["copingStrategiesUsed"], ["music"])
        self.assertEqual(stored[0]["photoUri"], "file:///photos/1.jpg")

    def test_today_entry_missing_after_midnight(self):
        self.engine.add_mood_entry(6)
        self.clock.advance(days=1)
        self.assertIsNone(self.engine.get_today_entry())

    def test_mood_outside_scale_is_rejected(self):
        for mood in (0, 11, True, 5.5):
            with self.assertRaises(ValueError):
                self.engine.add_mood_entry(mood)
        self.assertEqual(self.engine.mood_entries, [])

    def test_failed_write_keeps_memory_state(self):
        engine = MoodTrackingEngine(FailingStore(), clock=self.clock)
        engine.add_mood_entry(7)
        self.assertEqual(len(engine.mood_entries), 1)

    def test_malformed_stored_data_loads_as_empty(self):
        store = MemoryStore({
            MOOD_ENTRIES_KEY: "{not json",
            CRISIS_ALERTS_KEY: json.dumps([{"id": 1}]),
        })
        engine = MoodTrackingEngine(store, clock=self.clock)
        self.assertEqual(engine.mood_entries, [])
        self.assertEqual(engine.crisis_alerts, [])

    def test_reload_restores_entries(self):
        self.engine.add_mood_entry(4, warning_signs_present=["pacing"])
        reloaded = MoodTrackingEngine(self.store, clock=self.clock)
        self.assertEqual(reloaded.mood_entries, self.engine.mood_entries)

    def test_listeners_run_after_changes(self):
        calls = []
        self.engine.add_listener(lambda: calls.append(len(self.engine.mood_entries)))
        self.engine.add_mood_entry(5)
        self.engine.clear()
        self.assertEqual(calls, [1, 0])


class AlertTests(unittest.TestCase):
    def setUp(self):
        self.clock = FixedClock()
        self.store = MemoryStore()
        self.engine = MoodTrackingEngine(self.store, clock=self.clock)
        now_ms = int(self.clock().timestamp() * 1000)
        self.engine.crisis_alerts = [
            CrisisAlert(
                id="recent",
                level="mild",
                timestamp=now_ms - int(timedelta(hours=23).total_seconds() * 1000),
                triggers=["Declining mood trend detected"],
                recommended_actions=[],
            ),
            CrisisAlert(
                id="stale",
                level="severe",
                timestamp=now_ms - int(timedelta(hours=25).total_seconds() * 1000),
                triggers=["Very low mood detected"],
                recommended_actions=[],
            ),
        ]

    def test_active_window_is_twenty_four_hours(self):
        self.assertEqual([alert.id for alert in self.engine.get_active_alerts()], ["recent"])

    def test_dismiss_removes_and_persists(self):
        self.assertTrue(self.engine.dismiss_alert("stale"))
        self.assertEqual([alert.id for alert in self.engine.crisis_alerts], ["recent"])
        stored = json.loads(self.store.get(CRISIS_ALERTS_KEY))
        self.assertEqual([alert["id"] for alert in stored], ["recent"])

    def test_dismiss_unknown_id_is_noop(self):
        self.assertFalse(self.engine.dismiss_alert("missing"))
        self.assertEqual(len(self.engine.crisis_alerts), 2)

    def test_clear_removes_entries_and_alerts(self):
        self.engine.add_mood_entry(6)
        self.engine.clear()
        self.assertEqual(self.engine.mood_entries, [])
        self.assertEqual(self.engine.crisis_alerts, [])
        self.assertIsNone(self.store.get(MOOD_ENTRIES_KEY))
        self.assertIsNone(self.store.get(CRISIS_ALERTS_KEY))


if __name__ == "__main__":
    unittest.main()
