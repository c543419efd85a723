from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional
from src.database import get_db
from src.stations.schemas import Station, StationCreate, StationAvailabilityUpdate, StationSearchResult
from src.stations.service import StationService

router = APIRouter()

@router.get("/", response_model=StationSearchResult)
def get_stations(
    skip: int = Query(0, ge=0, description="Number of stations to skip"),
    limit: int = Query(50, ge=1, le=100, description="Number of stations to return"),
    query: Optional[str] = Query(None, description="Search by station name"),
    available_only: bool = Query(False, description="Only stations open for booking"),
    db: Session = Depends(get_db)
):
    """Get charging stations with optional search"""
    stations, total = StationService.get_stations(
        db, skip=skip, limit=limit, query=query, available_only=available_only
    )

    return StationSearchResult(
        stations=[Station.model_validate(s) for s in stations],
        total=total,
        skip=skip,
        limit=limit
    )

@router.post("/", response_model=Station, status_code=status.HTTP_201_CREATED)
def create_station(station: StationCreate, db: Session = Depends(get_db)):
    """Register a charging station"""
    return StationService.create_station(db, station)

@router.get("/{station_id}", response_model=Station)
def get_station(station_id: str, db: Session = Depends(get_db)):
    """Get station details by ID"""
    station = StationService.get_station_by_id(db, station_id)
    if not station:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Charging station not found"
        )
    return station

@router.patch("/{station_id}/availability", response_model=Station)
def update_station_availability(
    station_id: str,
    update: StationAvailabilityUpdate,
    db: Session = Depends(get_db)
):
    """Open or close a station for new bookings"""
    station = StationService.set_availability(db, station_id, update.is_available)
    if not station:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Charging station not found"
        )
    return station
