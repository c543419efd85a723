from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
from src.models import ChargingStation
from src.stations.schemas import StationCreate, StationAvailability

class StationService:
    @staticmethod
    def get_station_by_id(db: Session, station_id: str) -> Optional[ChargingStation]:
        """Get charging station by ID"""
        return db.query(ChargingStation).filter(ChargingStation.id == station_id).first()

    @staticmethod
    def lock_station(db: Session, station_id: str) -> Optional[ChargingStation]:
        """Load the station row with a row lock held until the transaction ends"""
        return db.query(ChargingStation).filter(
            ChargingStation.id == station_id
        ).with_for_update().first()

    @staticmethod
    def lookup(db: Session, station_id: str) -> StationAvailability:
        station = StationService.get_station_by_id(db, station_id)
        if not station:
            return StationAvailability(exists=False)
        return StationAvailability(exists=True, is_available=station.is_booking_available)

    @staticmethod
    def get_stations(
        db: Session,
        skip: int = 0,
        limit: int = 50,
        query: Optional[str] = None,
        available_only: bool = False
    ) -> Tuple[List[ChargingStation], int]:
        """Get stations with optional name search"""
        q = db.query(ChargingStation)

        if query:
            q = q.filter(ChargingStation.name.ilike(f"%{query}%"))

        if available_only:
            q = q.filter(ChargingStation.status == "active", ChargingStation.is_available.is_(True))

        total = q.count()
        stations = q.order_by(ChargingStation.name.asc()).offset(skip).limit(limit).all()

        return stations, total

    @staticmethod
    def create_station(db: Session, station: StationCreate) -> ChargingStation:
        db_station = ChargingStation(**station.model_dump())
        db.add(db_station)
        db.commit()
        db.refresh(db_station)
        return db_station

    @staticmethod
    def set_availability(db: Session, station_id: str, is_available: bool) -> Optional[ChargingStation]:
        station = StationService.get_station_by_id(db, station_id)
        if not station:
            return None

        station.is_available = is_available
        db.commit()
        db.refresh(station)
        return station
