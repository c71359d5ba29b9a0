import unittest

from lectur.errors import ValidationError
from lectur.validation import build_student, normalize_mobile_number, whatsapp_number


def _build(**overrides):
    fields = dict(
        student_id="STU-1",
        name="  Alice ",
        weekdays=["Wednesday", "monday"],
        times={"Monday": "9:00", "Wednesday": "16:30"},
    )
    fields.update(overrides)
    return build_student(**fields)


class TestBuildStudent(unittest.TestCase):
    def test_valid_input_is_canonicalized(self):
        s = _build(tuition_fee="1200", mobile_number="+880 1711-000000")
        self.assertEqual(s.name, "Alice")
        self.assertEqual(s.weekdays, ["Monday", "Wednesday"])
        self.assertEqual(s.times, {"Monday": "09:00", "Wednesday": "16:30"})
        self.assertEqual(s.tuition_fee, 1200.0)
        self.assertEqual(s.mobile_number, "8801711000000")
        self.assertEqual(s.classes_per_cycle, 12)

    def test_name_required(self):
        with self.assertRaises(ValidationError) as ctx:
            _build(name="   ")
        self.assertEqual(ctx.exception.field, "name")

    def test_every_weekday_needs_a_time(self):
        with self.assertRaises(ValidationError) as ctx:
            _build(weekdays=["Monday", "Friday"], times={"Monday": "09:00"})
        self.assertIn("Friday", str(ctx.exception))

    def test_malformed_time_rejected(self):
        with self.assertRaises(ValidationError):
            _build(weekdays=["Monday"], times={"Monday": "25:00"})

    def test_at_least_one_weekday(self):
        with self.assertRaises(ValidationError):
            _build(weekdays=[], times={})

    def test_cycle_limits(self):
        with self.assertRaises(ValidationError):
            _build(classes_per_cycle=0)
        with self.assertRaises(ValidationError):
            _build(classes_per_cycle="abc")
        with self.assertRaises(ValidationError):
            _build(classes_per_cycle=4, initial_classes_completed=5)
        with self.assertRaises(ValidationError):
            _build(initial_classes_completed=-1)
        s = _build(classes_per_cycle="8", initial_classes_completed="8")
        self.assertEqual((s.classes_per_cycle, s.initial_classes_completed), (8, 8))

    def test_negative_fee_rejected(self):
        with self.assertRaises(ValidationError):
            _build(tuition_fee=-5)
        self.assertIsNone(_build(tuition_fee="").tuition_fee)


class TestPhoneNumbers(unittest.TestCase):
    def test_normalize(self):
        self.assertEqual(normalize_mobile_number("017 11-22 33 44"), "01711223344")
        self.assertIsNone(normalize_mobile_number("  "))
        with self.assertRaises(ValidationError):
            normalize_mobile_number("call me")
        with self.assertRaises(ValidationError):
            normalize_mobile_number("123")

    def test_whatsapp_country_code(self):
        self.assertEqual(whatsapp_number("8801711223344"), "8801711223344")
        self.assertEqual(whatsapp_number("01711223344"), "8801711223344")
        self.assertEqual(whatsapp_number("1711223344"), "8801711223344")


if __name__ == "__main__":
    unittest.main()
