"""
Clinic day scheduling backend.

Layout:
- config.py        : settings from environment / .env
- db.py            : SQLAlchemy engine and sessions
- models.py        : ORM models and enums
- scheduling.py    : pure scheduling core (durations, window, slot allocation, serials, capacity, recompute)
- locks.py         : per (doctor, day) write lock
- services.py      : transactional use cases (book, cancel, edit window, reschedule, queries)
- notifications.py : notification collaborator and outbox
- api_main.py      : FastAPI app
- cli.py           : command line front end
- seed.py          : demo data
"""
