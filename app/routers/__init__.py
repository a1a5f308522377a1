# app/routers/__init__.py
from . import health
from . import users
from . import doctors
from . import time_slots
from . import appointments
from . import payments
from . import notifications
from . import reports
from . import audit

__all__ = [
    "health",
    "users",
    "doctors",
    "time_slots",
    "appointments",
    "payments",
    "notifications",
    "reports",
    "audit",
]
