#!/usr/bin/env python3

from decimal import Decimal

from src.database import SessionLocal, init_db
from src.models import Booking, BookingSequence, ChargingStation

def create_seed_data():
    init_db()
    db = SessionLocal()

    try:
        print("🚀 Creating seed data for EV Charging Station Booking System...")

        # Clear existing data (in reverse dependency order)
        print("Clearing existing data...")
        db.query(Booking).delete()
        db.query(BookingSequence).delete()
        db.query(ChargingStation).delete()

        print("Creating charging stations...")
        stations = [
            ChargingStation(
                name="Central Plaza DC Fast", location="Central Plaza", address="1 Plaza Road, Level B2",
                connector_type="CCS2", power_rating_kw=Decimal("150.00"), price_per_kwh=Decimal("0.65"),
                operator_id="operator-central"
            ),
            ChargingStation(
                name="Central Plaza AC", location="Central Plaza", address="1 Plaza Road, Level B2",
                connector_type="Type 2", power_rating_kw=Decimal("22.00"), price_per_kwh=Decimal("0.40"),
                operator_id="operator-central"
            ),
            ChargingStation(
                name="Riverside CHAdeMO", location="Riverside Mall", address="88 River Street",
                connector_type="CHAdeMO", power_rating_kw=Decimal("50.00"), price_per_kwh=Decimal("0.55"),
                operator_id="operator-riverside"
            ),
            ChargingStation(
                name="Airport Long Stay", location="Airport Car Park C", address="Terminal Road",
                connector_type="Type 2", power_rating_kw=Decimal("11.00"), price_per_kwh=Decimal("0.35"),
                operator_id="operator-airport"
            ),
            ChargingStation(
                name="Depot Bay 4", location="City Depot", address="12 Works Lane",
                connector_type="CCS2", power_rating_kw=Decimal("75.00"), price_per_kwh=Decimal("0.50"),
                status="maintenance", is_available=False, operator_id="operator-depot"
            ),
        ]
        db.add_all(stations)

        # Commit all changes
        db.commit()
        print("✅ Successfully created seed data for EV Charging Station Booking System!")
        print(f"Created:")
        print(f"  - {len(stations)} charging stations")
        print(f"  - {sum(1 for s in stations if s.is_booking_available)} open for booking")

    except Exception as e:
        print(f"❌ Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    create_seed_data()
