import asyncio
import unittest
from datetime import datetime, timedelta

from helpers import FixedClock, RecordingDispatcher, make_student
from lectur.backends import MemoryBackend
from lectur.logger import ErrorLogger
from lectur.notifications import NotificationPlanner, SingleFlight, next_occurrence, plan_reminders
from lectur.settings_store import Settings
from lectur.storage import EntityStore

# Monday
NOW = datetime(2025, 1, 6, 9, 30)


class TestPlanReminders(unittest.TestCase):
    def test_next_occurrence(self):
        self.assertEqual(next_occurrence("Monday", 10, 0, NOW), datetime(2025, 1, 6, 10, 0))
        self.assertEqual(next_occurrence("Monday", 9, 0, NOW), datetime(2025, 1, 13, 9, 0))
        self.assertEqual(next_occurrence("Sunday", 8, 0, NOW), datetime(2025, 1, 12, 8, 0))
        self.assertEqual(next_occurrence("Wednesday", 18, 0, NOW), datetime(2025, 1, 8, 18, 0))

    def test_one_hour_before_each_class_for_four_weeks(self):
        s = make_student("s1", "Alice", {"Monday": "10:00", "Wednesday": "18:00"})
        reminders = plan_reminders(s, NOW)
        by_id = {r.identifier: r for r in reminders}
        # Today's 10:00 class would remind at 09:00, which has passed.
        self.assertNotIn("student-s1-Monday-0", by_id)
        self.assertEqual(len(reminders), 7)
        self.assertEqual(by_id["student-s1-Monday-1"].fire_at, datetime(2025, 1, 13, 9, 0))
        self.assertEqual(by_id["student-s1-Monday-1"].class_at, datetime(2025, 1, 13, 10, 0))
        self.assertEqual(by_id["student-s1-Wednesday-3"].fire_at, datetime(2025, 1, 29, 17, 0))
        self.assertTrue(all(r.fire_at > NOW for r in reminders))
        self.assertEqual(reminders[0].body, "You have a class with Alice in 1 hour")
        self.assertEqual(reminders[0].title, "Tuition Reminder")

    def test_weekday_without_time_is_skipped(self):
        s = make_student("s1", "Alice", {"Friday": "10:00"})
        s.weekdays.append("Saturday")
        self.assertEqual({r.weekday for r in plan_reminders(s, NOW)}, {"Friday"})

    def test_custom_lead_and_horizon(self):
        s = make_student("s1", "Alice", {"Friday": "10:00"})
        reminders = plan_reminders(s, NOW, weeks=2, lead=timedelta(minutes=30))
        self.assertEqual([r.fire_at for r in reminders], [datetime(2025, 1, 10, 9, 30), datetime(2025, 1, 17, 9, 30)])
        self.assertTrue(reminders[0].body.endswith("in 30 minutes"))


class TestSingleFlight(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_calls_share_one_follow_up_run(self):
        gate = asyncio.Event()
        calls = []

        async def work():
            calls.append(len(calls) + 1)
            await gate.wait()
            return len(calls)

        flight = SingleFlight(work)
        first = asyncio.create_task(flight())
        await asyncio.sleep(0)
        second = asyncio.create_task(flight())
        third = asyncio.create_task(flight())
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(first, second, third)
        self.assertEqual(results, [1, 2, 2])
        self.assertEqual(len(calls), 2)
        self.assertFalse(flight.running)

    async def test_failure_reaches_caller_and_next_call_runs_again(self):
        attempts = []

        async def work():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("boom")
            return "ok"

        flight = SingleFlight(work)
        with self.assertRaises(RuntimeError):
            await flight()
        self.assertEqual(await flight(), "ok")


class TestNotificationPlanner(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = EntityStore(MemoryBackend())
        self.dispatcher = RecordingDispatcher()
        self.planner = NotificationPlanner(
            self.store, self.dispatcher, Settings(), FixedClock(NOW), ErrorLogger(path=None)
        )

    async def test_replanning_is_idempotent(self):
        s = make_student("s1", "Alice", {"Monday": "10:00", "Wednesday": "18:00"})
        await self.planner.replan_student(s)
        first = dict(self.dispatcher.scheduled)
        await self.planner.replan_student(s)
        self.assertEqual(self.dispatcher.scheduled, first)
        self.assertEqual(len(first), 7)
        self.assertEqual(self.dispatcher.cancelled, ["student-s1-", "student-s1-"])

    async def test_schedule_change_drops_old_reminders(self):
        s = make_student("s1", "Alice", {"Monday": "10:00"})
        await self.planner.replan_student(s)
        moved = make_student("s1", "Alice", {"Thursday": "10:00"})
        await self.planner.replan_student(moved)
        self.assertTrue(all("Thursday" in k for k in self.dispatcher.scheduled))

    async def test_cancel_student_only_touches_that_student(self):
        await self.planner.replan_student(make_student("s1", "A", {"Friday": "10:00"}))
        await self.planner.replan_student(make_student("s2", "B", {"Friday": "11:00"}))
        await self.planner.cancel_student("s1")
        self.assertTrue(self.dispatcher.scheduled)
        self.assertTrue(all(k.startswith("student-s2-") for k in self.dispatcher.scheduled))

    async def test_replan_all_isolates_failures(self):
        await self.store.save_student(make_student("bad", "Bad", {"Friday": "10:00"}))
        await self.store.save_student(make_student("good", "Good", {"Friday": "11:00"}))
        self.dispatcher.fail_for = {"bad"}
        report = await self.planner.replan_all()
        self.assertFalse(report.ok)
        self.assertIn("bad", report.failures)
        self.assertEqual(report.scheduled, {"good": 4})

    async def test_disabled_reminders_schedule_nothing(self):
        planner = NotificationPlanner(
            self.store, self.dispatcher, Settings(reminders_enabled=False), FixedClock(NOW), ErrorLogger(path=None)
        )
        await self.store.save_student(make_student("s1", "A", {"Friday": "10:00"}))
        self.assertEqual(await planner.replan_student(make_student("s1", "A", {"Friday": "10:00"})), [])
        report = await planner.replan_all()
        self.assertEqual(report.scheduled, {})
        self.assertEqual(self.dispatcher.scheduled, {})
        self.assertFalse(NotificationPlanner(self.store, None).enabled)

    async def test_disabling_reminders_clears_already_scheduled_ones(self):
        await self.store.save_student(make_student("s1", "A", {"Friday": "10:00"}))
        await self.store.save_student(make_student("s2", "B", {"Monday": "11:00"}))
        await self.planner.replan_all()
        self.assertTrue(self.dispatcher.scheduled)

        self.planner.settings.reminders_enabled = False
        self.assertEqual(await self.planner.replan_student(make_student("s1", "A", {"Friday": "10:00"})), [])
        self.assertTrue(all(k.startswith("student-s2-") for k in self.dispatcher.scheduled))

        report = await self.planner.replan_all()
        self.assertEqual(report.scheduled, {})
        self.assertEqual(self.dispatcher.scheduled, {})

    async def test_replan_all_drops_reminders_of_removed_students(self):
        await self.planner.replan_student(make_student("gone", "Gone", {"Friday": "10:00"}))
        await self.store.save_student(make_student("s1", "A", {"Monday": "11:00"}))
        await self.planner.replan_all()
        self.assertTrue(self.dispatcher.scheduled)
        self.assertTrue(all(k.startswith("student-s1-") for k in self.dispatcher.scheduled))

    async def test_cancel_student_works_while_disabled(self):
        await self.planner.replan_student(make_student("s1", "A", {"Friday": "10:00"}))
        self.planner.settings.reminders_enabled = False
        await self.planner.cancel_student("s1")
        self.assertEqual(self.dispatcher.scheduled, {})


if __name__ == "__main__":
    unittest.main()
