# init_db.py
import argparse
import asyncio
from datetime import date, time, timedelta
from decimal import Decimal

from app.db.sql import engine, AsyncSessionLocal
from app.db.base import Base

# IMPORTANT: import all models so that Base.metadata knows them
import app.models  # noqa: F401
from app.modules.doctors import repository as doctors_repo
from app.modules.time_slots import repository as slots_repo
from app.modules.users.models import UserRole
from app.modules.users.repository import create_user


async def init_models():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    print("Database schema recreated successfully!")


async def seed_demo():
    """
    One admin, one agent, two hospitals, three doctors and a week of
    morning/evening sessions.
    """
    async with AsyncSessionLocal() as session:
        admin = await create_user(session, email="admin@echanneling.lk", name="Portal Admin", role=UserRole.ADMIN)
        agent = await create_user(
            session,
            email="agent@corporate.lk",
            name="Demo Agent",
            role=UserRole.AGENT,
            company_name="Demo Corporate",
            contact_number="+94112345678",
        )

        colombo = await doctors_repo.create_hospital(
            session, name="Asiri Central", address="114 Norris Canal Rd", city="Colombo", phone="+94114665500"
        )
        kandy = await doctors_repo.create_hospital(
            session, name="Suwasevana Kandy", address="No 6 Peradeniya Rd", city="Kandy"
        )
        doctors = [
            await doctors_repo.create_doctor(
                session, hospital_id=colombo.id, name="Dr. Nimal Perera", email="nimal@asiri.lk",
                specialization="Cardiology", qualification="MBBS, MD", consultation_fee=Decimal("3500.00"),
                experience_years=15, rating=Decimal("4.80"),
            ),
            await doctors_repo.create_doctor(
                session, hospital_id=colombo.id, name="Dr. Shanthi Fernando", email="shanthi@asiri.lk",
                specialization="Pediatrics", qualification="MBBS, DCH", consultation_fee=Decimal("2500.00"),
                experience_years=9,
            ),
            await doctors_repo.create_doctor(
                session, hospital_id=kandy.id, name="Dr. Ruwan Jayasinghe", email="ruwan@suwasevana.lk",
                specialization="Dermatology", qualification="MBBS, MD", consultation_fee=Decimal("3000.00"),
                experience_years=7,
            ),
        ]

        today = date.today()
        for offset in range(7):
            day = today + timedelta(days=offset)
            for doctor in doctors:
                for start, end in ((time(9, 0), time(12, 0)), (time(17, 0), time(20, 0))):
                    await slots_repo.create_slot(
                        session,
                        doctor_id=doctor.id,
                        slot_date=day,
                        start_time=start,
                        end_time=end,
                        max_appointments=20,
                        consultation_fee=doctor.consultation_fee,
                    )
        await session.commit()

    print(f"Seeded demo data (admin={admin.id}, agent={agent.id})")


async def main(seed: bool):
    await init_models()
    if seed:
        await seed_demo()
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Recreate the database schema")
    parser.add_argument("--seed", action="store_true", help="insert demo agents, doctors and slots")
    args = parser.parse_args()
    asyncio.run(main(args.seed))
