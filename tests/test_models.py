import unittest

from lectur.dates import month_label, parse_iso_date, parse_month_label, to_24_hour, weekday_name
from lectur.errors import ValidationError
from lectur.models import ClassEntry, FeeEntry, FeeStatus, OneTimeSchedule, Student
from datetime import date


class TestStudentShape(unittest.TestCase):
    def test_legacy_single_time_is_spread_over_weekdays(self):
        s = Student.from_dict({"id": "1", "name": "Old", "weekdays": ["Monday", "Friday"], "time": "2:30 PM"})
        self.assertEqual(s.times, {"Monday": "14:30", "Friday": "14:30"})

    def test_unparseable_legacy_time_falls_back_to_default(self):
        s = Student.from_dict({"id": "1", "name": "Old", "weekdays": ["Monday"], "time": "soon"})
        self.assertEqual(s.times, {"Monday": "10:00"})

    def test_missing_optional_fields_get_defaults(self):
        s = Student.from_dict({"id": "7", "name": "Min"})
        self.assertEqual(s.weekdays, [])
        self.assertEqual(s.times, {})
        self.assertEqual(s.classes_per_cycle, 12)
        self.assertEqual(s.initial_classes_completed, 0)
        self.assertIsNone(s.tuition_fee)
        self.assertIsNone(s.mobile_number)

    def test_wrongly_typed_collections_are_ignored(self):
        s = Student.from_dict({"id": "1", "name": "Odd", "weekdays": 5, "times": ["10:00"], "classesPerCycle": None})
        self.assertEqual(s.weekdays, [])
        self.assertEqual(s.times, {})
        self.assertEqual(s.classes_per_cycle, 12)
        self.assertEqual(Student.from_dict({"id": "2", "weekdays": "Monday"}).weekdays, [])

    def test_weekday_without_time_has_no_class(self):
        s = Student(id="1", name="A", weekdays=["Monday", "Tuesday"], times={"Monday": "09:00"})
        self.assertEqual(s.time_for("Monday"), "09:00")
        self.assertIsNone(s.time_for("Tuesday"))
        self.assertEqual(s.missing_times(), ["Tuesday"])

    def test_to_dict_uses_stored_key_names(self):
        s = Student(id="1", name="A", weekdays=["Monday"], times={"Monday": "09:00"}, tuition_fee=1500.0)
        d = s.to_dict()
        self.assertEqual(d["classesPerCycle"], 12)
        self.assertEqual(d["tuitionFee"], 1500.0)
        self.assertNotIn("mobileNumber", d)
        self.assertEqual(Student.from_dict(d), s)


class TestRecords(unittest.TestCase):
    def test_one_time_schedule_with_blank_time_is_removal(self):
        self.assertTrue(OneTimeSchedule(id="x", student_id="s", date="2025-01-06", time="  ").is_removal)
        self.assertFalse(OneTimeSchedule(id="x", student_id="s", date="2025-01-06", time="11:00").is_removal)

    def test_class_entry_date_truncated_to_day(self):
        e = ClassEntry.from_dict({"id": "e", "studentId": "s", "date": "2025-01-06T08:00:00.000Z"})
        self.assertEqual(e.date, "2025-01-06")
        self.assertIsNone(e.topics)

    def test_fee_status_round_trip(self):
        fee = FeeEntry(id="f", student_id="s", student_name="A", amount=1000, month="January 2025", date="2025-01-06")
        self.assertIs(fee.status, FeeStatus.PAYMENT_DUE)
        once = fee.with_status(fee.status.toggled())
        self.assertIs(once.status, FeeStatus.COMPLETED)
        twice = once.with_status(once.status.toggled())
        self.assertEqual(twice, fee)

    def test_unknown_fee_status_reads_as_payment_due(self):
        fee = FeeEntry.from_dict({"id": "f", "studentId": "s", "amount": "250", "status": "weird"})
        self.assertIs(fee.status, FeeStatus.PAYMENT_DUE)
        self.assertEqual(fee.amount, 250.0)
        self.assertEqual(fee.to_dict()["status"], "Payment Due")


class TestDates(unittest.TestCase):
    def test_to_24_hour(self):
        self.assertEqual(to_24_hour("10:00 AM"), "10:00")
        self.assertEqual(to_24_hour("12:15 AM"), "00:15")
        self.assertEqual(to_24_hour("12:45 PM"), "12:45")
        self.assertEqual(to_24_hour("9:05"), "09:05")

    def test_weekday_name(self):
        self.assertEqual(weekday_name(date(2025, 1, 5)), "Sunday")
        self.assertEqual(weekday_name(date(2025, 1, 6)), "Monday")

    def test_bad_iso_date_is_a_validation_error(self):
        self.assertEqual(parse_iso_date("2025-01-06T08:00:00"), date(2025, 1, 6))
        for bad in ("2025-02-30", "06/01/2025", ""):
            with self.assertRaises(ValidationError) as ctx:
                parse_iso_date(bad)
            self.assertEqual(ctx.exception.field, "date")

    def test_month_labels(self):
        self.assertEqual(month_label(date(2025, 1, 31)), "January 2025")
        self.assertEqual(parse_month_label("March 2024"), (2024, 3))
        self.assertEqual(parse_month_label("Sep 2024"), (2024, 9))
        self.assertIsNone(parse_month_label("Cycle 3"))


if __name__ == "__main__":
    unittest.main()
