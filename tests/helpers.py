from app.core.security import create_access_token
from app.modules.appointments.schemas import AppointmentCreateRequest, PatientDetails


def auth_headers(user) -> dict:
    token = create_access_token(subject=str(user.id), email=user.email, role=user.role)
    return {"Authorization": f"Bearer {token}"}


def booking_request(slot_id, name="Kamal Perera", **kwargs) -> AppointmentCreateRequest:
    patient = PatientDetails(
        name=name,
        phone=kwargs.pop("phone", "+94771234567"),
        email=kwargs.pop("email", "kamal@example.com"),
    )
    return AppointmentCreateRequest(time_slot_id=slot_id, patient=patient, **kwargs)


def booking_body(slot_id, name="Kamal Perera") -> dict:
    return {
        "time_slot_id": str(slot_id),
        "patient": {"name": name, "phone": "+94771234567", "email": "kamal@example.com"},
        "payment_method": "CREDIT_CARD",
    }


def drain(sub) -> list:
    events = []
    while not sub.queue.empty():
        events.append(sub.queue.get_nowait())
    return events
