#!/usr/bin/env python3
"""
Seed the local database with demo roles, users, establishments and a few
activities (one weekly series, one standalone workshop).

Usage:
  python scripts/seed_demo_data.py

Idempotent: users are matched by username, establishments by name and
activities by (establishment, title).
"""
import sys
import os
from datetime import date, time, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from civicportal.auth.security import create_access_token
from civicportal.db import SessionLocal, Base, engine
from civicportal.models.models import Activity, Establishment, Role, User
from civicportal.schemas.activities import ActivityCreate
from civicportal.services.activity_service import create_activity


def ensure_role(session, name: str, description: str = "") -> Role:
    role = session.query(Role).filter(Role.name == name).first()
    if role:
        return role
    role = Role(name=name, description=description or name.title())
    session.add(role)
    session.flush()
    return role


def ensure_establishment(session, name: str, sector: str, commune: str) -> Establishment:
    row = session.query(Establishment).filter(Establishment.name == name).first()
    if row:
        return row
    row = Establishment(name=name, sector=sector, commune=commune)
    session.add(row)
    session.flush()
    return row


def ensure_user(session, username: str, roles: list, managed: list | None = None) -> User:
    user = session.query(User).filter(User.username == username).first()
    if not user:
        user = User(username=username, email=f"{username}@example.org", display_name=username.replace(".", " ").title())
        session.add(user)
    user.roles = session.query(Role).filter(Role.name.in_(roles)).all()
    user.managed_establishment_ids = [str(e) for e in (managed or [])]
    session.flush()
    return user


def ensure_activity(session, actor: User, payload: ActivityCreate) -> Activity:
    existing = (
        session.query(Activity)
        .filter(Activity.establishment_id == payload.establishment_id, Activity.title == payload.title)
        .first()
    )
    if existing:
        return existing
    return create_activity(session, payload, actor=actor)


def main() -> None:
    if engine.url.drivername.startswith("sqlite"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        ensure_role(session, "admin", "Administrator")
        ensure_role(session, "coordinator", "Establishment coordinator")

        youth = ensure_establishment(session, "Maison des Jeunes Al Amal", "youth", "Hay Hassani")
        library = ensure_establishment(session, "Bibliotheque Municipale", "culture", "Maarif")

        admin = ensure_user(session, "admin.user", ["admin"])
        coordinator = ensure_user(session, "sara.coordinator", ["coordinator"], managed=[youth.id, library.id])

        monday = date.today() - timedelta(days=date.today().weekday())
        ensure_activity(session, coordinator, ActivityCreate(
            establishment_id=youth.id,
            title="Atelier de theatre",
            activity_type="culture",
            location="Salle polyvalente",
            responsible_name="Sara",
            expected_participants=20,
            date=monday,
            start_time=time(15, 0),
            end_time=time(17, 0),
            is_recurrent=True,
            recurrence_pattern="WEEKLY",
            recurrence_days=[1, 3],
            recurrence_end_date=monday + timedelta(weeks=12),
        ))
        ensure_activity(session, admin, ActivityCreate(
            establishment_id=library.id,
            title="Club de lecture",
            activity_type="education",
            date=monday + timedelta(days=5),
            start_time=time(10, 0),
            end_time=time(12, 0),
            status="PLANNED",
        ))
        session.commit()

        print("Seed complete.")
        print(f"admin token:       {create_access_token(str(admin.id), ['admin'])}")
        print(f"coordinator token: {create_access_token(str(coordinator.id), ['coordinator'])}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
