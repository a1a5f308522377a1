# app/models.py
# Importing this module registers every table on Base.metadata
# (used by init_db, init_db.py and the Alembic env).
from __future__ import annotations

from app.db.base import Base
from app.modules.users.models import AuditLog, User, UserRole
from app.modules.doctors.models import Doctor, Hospital
from app.modules.time_slots.models import TimeSlot
from app.modules.appointments.models import Appointment, ApptStatus, PaymentStatus
from app.modules.payments.models import Payment, PaymentMethod
from app.modules.notifications.models import Notification, NotificationType

__all__ = [
    "Base",
    "AuditLog",
    "User",
    "UserRole",
    "Hospital",
    "Doctor",
    "TimeSlot",
    "Appointment",
    "ApptStatus",
    "PaymentStatus",
    "Payment",
    "PaymentMethod",
    "Notification",
    "NotificationType",
]
