from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "Lectur Tuition Manager"

DATA_DIR = Path(os.environ.get("LECTUR_HOME", Path.home() / ".lectur"))
DATA_JSON_PATH = DATA_DIR / "lectur_data.json"
DATA_XLSX_PATH = DATA_DIR / "lectur_data.xlsx"
SETTINGS_JSON_PATH = DATA_DIR / "settings.json"
ERROR_LOG_PATH = DATA_DIR / "error_log.txt"

STUDENTS_KEY = "@lectur:students"
CLASS_ENTRIES_KEY = "@lectur:classEntries"
ONE_TIME_SCHEDULES_KEY = "@lectur:oneTimeSchedules"
FEE_ENTRIES_KEY = "@lectur:feeEntries"
ACTIVITY_KEY = "@lectur:activity"

KV_SHEET = "store"

# Index matches date.isoweekday() % 7.
WEEKDAYS = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]

MONTHS = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]

DEFAULT_CLASSES_PER_CYCLE = 12
DEFAULT_CLASS_TIME = "10:00"
