"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample passengers, each with a funded wallet
  - 10 sample drivers (spread around Johannesburg / OR Tambo)
  - the default cancellation policy, activated
"""

import asyncio
from decimal import Decimal

import h3
from sqlalchemy import text

from ridecore.config import settings
from ridecore.domain.cancellation import default_policy
from ridecore.domain.enums import VehicleClass
from ridecore.infrastructure.database import async_session_factory, engine
from ridecore.infrastructure.locks import InMemoryLockProvider
from ridecore.infrastructure.models import DriverModel, PassengerModel
from ridecore.infrastructure.repositories import SqlPolicyRepository, SqlWalletRepository
from ridecore.services.wallet_ledger import WalletLedger

PASSENGERS = [
    {"id": "p-thandi", "name": "Thandi Nkosi", "email": "thandi@example.com", "top_up": "500"},
    {"id": "p-sipho", "name": "Sipho Dlamini", "email": "sipho@example.com", "top_up": "250"},
    {"id": "p-lerato", "name": "Lerato Mokoena", "email": "lerato@example.com", "top_up": "1000"},
    {"id": "p-pieter", "name": "Pieter van Wyk", "email": "pieter@example.com", "top_up": "150"},
    {"id": "p-ayesha", "name": "Ayesha Patel", "email": "ayesha@example.com", "top_up": "400"},
    {"id": "p-kagiso", "name": "Kagiso Molefe", "email": "kagiso@example.com", "top_up": "75"},
    {"id": "p-naledi", "name": "Naledi Khumalo", "email": "naledi@example.com", "top_up": "600"},
    {"id": "p-johan", "name": "Johan Botha", "email": "johan@example.com", "top_up": "300"},
]

DRIVERS = [
    # Sandton
    {"id": "d-bongani", "name": "Bongani Zulu", "class": VehicleClass.STANDARD, "lat": -26.1076, "lng": 28.0567},
    {"id": "d-zanele", "name": "Zanele Mahlangu", "class": VehicleClass.STANDARD, "lat": -26.1052, "lng": 28.0520},
    {"id": "d-ruan", "name": "Ruan Pretorius", "class": VehicleClass.PREMIUM, "lat": -26.1090, "lng": 28.0601},
    # Rosebank / CBD
    {"id": "d-mpho", "name": "Mpho Sithole", "class": VehicleClass.STANDARD, "lat": -26.1467, "lng": 28.0436},
    {"id": "d-fatima", "name": "Fatima Essop", "class": VehicleClass.PREMIUM, "lat": -26.2041, "lng": 28.0473},
    {"id": "d-themba", "name": "Themba Ndlovu", "class": VehicleClass.STANDARD, "lat": -26.2023, "lng": 28.0436},
    # OR Tambo airport
    {"id": "d-anele", "name": "Anele Mthembu", "class": VehicleClass.LUXURY, "lat": -26.1337, "lng": 28.2420},
    {"id": "d-chris", "name": "Chris Naidoo", "class": VehicleClass.STANDARD, "lat": -26.1325, "lng": 28.2395},
    {"id": "d-lindiwe", "name": "Lindiwe Radebe", "class": VehicleClass.PREMIUM, "lat": -26.1350, "lng": 28.2441},
    {"id": "d-werner", "name": "Werner Steyn", "class": VehicleClass.LUXURY, "lat": -26.1318, "lng": 28.2380},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM passengers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Passengers ────────────────────────────────────────────────
        for p in PASSENGERS:
            session.add(PassengerModel(id=p["id"], name=p["name"], email=p["email"]))
        await session.flush()
        print(f"  Created {len(PASSENGERS)} passengers")

        # ── Drivers ───────────────────────────────────────────────────
        for d in DRIVERS:
            session.add(
                DriverModel(
                    id=d["id"],
                    name=d["name"],
                    vehicle_class=d["class"],
                    is_available=True,
                    latitude=d["lat"],
                    longitude=d["lng"],
                    h3_cell=h3.latlng_to_cell(d["lat"], d["lng"], settings.h3_resolution),
                )
            )
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers")

        # ── Cancellation policy ───────────────────────────────────────
        policy = await SqlPolicyRepository(session).activate(default_policy())
        print(f"  Activated policy '{policy.name}' v{policy.version}")

        # ── Wallets ───────────────────────────────────────────────────
        # Single process, no Redis needed for the seed run
        ledger = WalletLedger(
            SqlWalletRepository(session), InMemoryLockProvider(), currency=settings.currency
        )
        for p in PASSENGERS:
            await ledger.top_up(
                p["id"], Decimal(p["top_up"]), reference=f"seed:{p['id']}",
                description="Welcome credit",
            )
        print(f"  Funded {len(PASSENGERS)} wallets")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
