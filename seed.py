"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 4 cab types (Mini, Sedan, SUV, Premium)
  - 6 sample users
  - 8 sample drivers (two recorded by vehicle-type name only, as on
    older driver records)
  - 6 sample bookings (mix of pending, confirmed, assigned, completed)
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from src.domain import state_machine
from src.domain.entities import Booking, ById, ByName, Driver, utcnow
from src.domain.enums import BookingStatus, DriverStatus
from src.domain.matching import is_compatible
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.repositories import BookingStore


CAB_TYPES = [
    {"name": "Mini", "capacity": 4, "description": "Compact hatchback"},
    {"name": "Sedan", "capacity": 4, "description": "Comfortable sedan"},
    {"name": "SUV", "capacity": 6, "description": "Spacious SUV"},
    {"name": "Premium", "capacity": 4, "description": "Luxury sedan"},
]

USERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com", "phone": "+919800000001"},
    {"name": "Priya Patel", "email": "priya@example.com", "phone": "+919800000002"},
    {"name": "Rohan Mehta", "email": "rohan@example.com", "phone": "+919800000003"},
    {"name": "Sneha Gupta", "email": "sneha@example.com", "phone": "+919800000004"},
    {"name": "Vikram Singh", "email": "vikram@example.com", "phone": "+919800000005"},
    {"name": "Ananya Reddy", "email": "ananya@example.com", "phone": "+919800000006"},
]

DRIVERS = [
    # (name, vehicle number, model, cab type name, recorded by name only)
    ("Ramesh Yadav", "MH01AB1001", "Maruti Swift", "Mini", False),
    ("Suresh Kumar", "MH01AB1002", "Hyundai i10", "Mini", False),
    ("Mahesh Pawar", "MH01AB2001", "Honda City", "Sedan", False),
    ("Dinesh Patil", "MH01AB2002", "Maruti Dzire", "sedan ", True),
    ("Ganesh Shinde", "MH01AB3001", "Toyota Innova", "SUV", False),
    ("Prakash Jadhav", "MH01AB3002", "Mahindra XUV700", "suv", True),
    ("Rajesh Naik", "MH01AB4001", "Mercedes E-Class", "Premium", False),
    ("Anil Deshmukh", "MH01AB2003", "Skoda Slavia", "Sedan", False),
]

# (user index, pickup, drop, cab type, amount, target status)
BOOKINGS = [
    (0, "Mumbai Airport T2", "Andheri West", "Sedan", 450.0, BookingStatus.PENDING),
    (1, "Bandra Kurla Complex", "Powai", "Mini", 320.0, BookingStatus.CONFIRMED),
    (2, "Dadar", "Mumbai Airport T1", "SUV", 780.0, BookingStatus.CONFIRMED),
    (3, "Colaba", "Worli", "Sedan", 390.0, BookingStatus.ASSIGNED),
    (4, "Juhu", "Lower Parel", "Premium", 1200.0, BookingStatus.COMPLETED),
    (5, "Thane", "Vashi", "Mini", 410.0, BookingStatus.CONFIRMED),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

    store = BookingStore(async_session_factory)

    # ── Cab types ─────────────────────────────────────────────────────
    cab_types = {}
    for c in CAB_TYPES:
        cab_type = await store.create_cab_type(c["name"], c["capacity"], c["description"])
        cab_types[cab_type.name] = cab_type
    print(f"  Created {len(cab_types)} cab types")

    # ── Users ─────────────────────────────────────────────────────────
    user_ids = [await store.create_user(u["name"], u["email"], u["phone"]) for u in USERS]
    print(f"  Created {len(user_ids)} users")

    # ── Drivers ───────────────────────────────────────────────────────
    drivers = []
    for name, number, model, type_name, by_name_only in DRIVERS:
        refs = (
            (ByName(type_name),)
            if by_name_only
            else (ById(cab_types[type_name].id), ByName(type_name))
        )
        driver = await store.create_driver(
            Driver(
                name=name,
                phone=f"+91990{number[-4:]}",
                email=f"{name.split()[0].lower()}@drivers.example.com",
                vehicle_types=refs,
                vehicle_number=number,
                vehicle_model=model,
                rating=4.5,
                rating_count=10,
                total_rides=10,
            )
        )
        drivers.append(driver)
    print(f"  Created {len(drivers)} drivers")

    # ── Bookings, walked through the state machine ────────────────────
    now = utcnow()
    for user_idx, pickup, drop, type_name, amount, target in BOOKINGS:
        booking = await store.create_booking(
            Booking(
                user_id=user_ids[user_idx],
                pickup_location=pickup,
                drop_location=drop,
                cab_type_id=cab_types[type_name].id,
                pickup_at=now + timedelta(hours=2),
                total_amount=amount,
            )
        )
        if target != BookingStatus.PENDING:
            booking = await store.apply(
                state_machine.record_payment(booking, f"pay_{booking.code}", True)
            )
        if target in (BookingStatus.ASSIGNED, BookingStatus.COMPLETED):
            all_types = await store.cab_types()
            driver = next(
                d
                for d in await store.list_drivers()
                if d.status == DriverStatus.AVAILABLE
                and is_compatible(booking, d, all_types)
            )
            booking = await store.apply(state_machine.assign(booking, driver, all_types))
        if target == BookingStatus.COMPLETED:
            booking = await store.apply(state_machine.start(booking, booking.driver_id))
            booking = await store.apply(state_machine.complete(booking, booking.driver_id))
    print(f"  Created {len(BOOKINGS)} bookings")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
