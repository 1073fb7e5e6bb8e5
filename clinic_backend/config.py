from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# SQLite file in the project root unless DATABASE_URL is set
DB_PATH = Path(__file__).resolve().parents[1] / "clinic_schedule.sqlite"
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DB_PATH}")
SQL_ECHO = os.getenv("SQL_ECHO", "0") == "1"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Max wait for the per-day lock before a request is rejected as busy
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", "5"))

DEFAULT_MAX_APPOINTMENTS = int(os.getenv("DEFAULT_MAX_APPOINTMENTS", "17"))

# Shared key the admin collaborator presents as a Bearer token
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "CHANGE_ME_DEV_KEY")


def parse_flat_durations(raw: str) -> dict[str, int]:
    """
    Parses "Physiotherapist=25,Dentist=30" into {"Physiotherapist": 25, "Dentist": 30}.
    Empty entries are skipped.
    """
    out: dict[str, int] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        name, _, minutes = item.partition("=")
        if not minutes.strip():
            raise ValueError(f"Invalid flat duration entry: {item!r}")
        out[name.strip()] = int(minutes)
    return out


# Doctor types booked with a single duration whatever the visit reason
FLAT_DURATIONS = parse_flat_durations(os.getenv("FLAT_DURATIONS", "Physiotherapist=25"))
