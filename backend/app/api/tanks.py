from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from alerting.records import Reading
from alerting.tank_status import TankStatistics
from api.alerts import AlertOut, alert_out, get_alert_service, run_or_http
from models import OxygenTank, get_session
from services.alert_service import AlertService

router = APIRouter(prefix="/api/tanks", tags=["tanks"])


# --- Schemas ---

class TankCreate(BaseModel):
    tank_number: str
    name: str
    location: str
    capacity: float = Field(gt=0)
    pressure_unit: str = "psi"
    max_pressure: float = 2200.0
    min_pressure: float = 100.0
    critical_pressure: float = 50.0
    refill_threshold: float | None = Field(None, ge=0, le=100)
    min_temperature: float | None = None
    max_temperature: float | None = None
    min_humidity: float | None = None
    max_humidity: float | None = None
    leak_detection_enabled: bool = True
    temperature_monitoring_enabled: bool = True
    alerts_enabled: bool = True
    next_maintenance_date: datetime | None = None
    expiration_date: datetime | None = None


class TankUpdate(BaseModel):
    name: str | None = None
    location: str | None = None
    capacity: float | None = Field(None, gt=0)
    max_pressure: float | None = None
    min_pressure: float | None = None
    critical_pressure: float | None = None
    refill_threshold: float | None = Field(None, ge=0, le=100)
    min_temperature: float | None = None
    max_temperature: float | None = None
    min_humidity: float | None = None
    max_humidity: float | None = None
    is_leaking: bool | None = None
    is_damaged: bool | None = None
    leak_detection_enabled: bool | None = None
    temperature_monitoring_enabled: bool | None = None
    alerts_enabled: bool | None = None
    next_maintenance_date: datetime | None = None
    expiration_date: datetime | None = None


class TankOut(BaseModel):
    id: str
    tank_number: str
    name: str
    location: str
    capacity: float
    current_level: float
    fill_percentage: float
    current_pressure: float
    pressure_unit: str
    max_pressure: float
    min_pressure: float
    critical_pressure: float
    refill_threshold: float | None
    temperature: float | None
    humidity: float | None
    is_leaking: bool
    is_damaged: bool
    alerts_enabled: bool
    last_reading_at: datetime | None
    next_maintenance_date: datetime | None
    expiration_date: datetime | None
    last_alert_at: datetime | None

    model_config = {"from_attributes": True}


class ReadingIn(BaseModel):
    model_config = {"allow_inf_nan": False}

    level: float = Field(ge=0)
    pressure: float = Field(ge=0)
    temperature: float | None = None
    humidity: float | None = None
    timestamp: datetime | None = None


class TankAttentionOut(BaseModel):
    tank_id: str
    tank_number: str
    location: str | None
    fill_percentage: float | None
    current_pressure: float
    reasons: list[str]


# --- Endpoints ---

@router.get("", response_model=list[TankOut])
async def list_tanks(session: AsyncSession = Depends(get_session)):
    result = await session.execute(select(OxygenTank).order_by(OxygenTank.tank_number))
    return result.scalars().all()


@router.get("/statistics", response_model=TankStatistics)
async def tank_statistics(service: AlertService = Depends(get_alert_service)):
    return await run_or_http(service.tank_statistics())


@router.get("/attention", response_model=list[TankAttentionOut])
async def tanks_requiring_attention(service: AlertService = Depends(get_alert_service)):
    """Tanks whose last stored state breaches a condition, with the reasons."""
    flagged = await run_or_http(service.tanks_requiring_attention())
    return [
        TankAttentionOut(
            tank_id=config.tank_id,
            tank_number=config.tank_number,
            location=config.location,
            fill_percentage=round(config.current_level / config.capacity * 100, 1)
            if config.capacity > 0 else None,
            current_pressure=config.current_pressure,
            reasons=reasons,
        )
        for config, reasons in flagged
    ]


@router.get("/{tank_id}", response_model=TankOut)
async def get_tank(tank_id: str, session: AsyncSession = Depends(get_session)):
    tank = await session.get(OxygenTank, tank_id)
    if not tank:
        raise HTTPException(404, "Tank not found")
    return tank


@router.post("", response_model=TankOut, status_code=201)
async def create_tank(data: TankCreate, session: AsyncSession = Depends(get_session)):
    tank = OxygenTank(**data.model_dump())
    session.add(tank)
    await session.commit()
    await session.refresh(tank)
    return tank


@router.patch("/{tank_id}", response_model=TankOut)
async def update_tank(
    tank_id: str,
    data: TankUpdate,
    session: AsyncSession = Depends(get_session),
):
    tank = await session.get(OxygenTank, tank_id)
    if not tank:
        raise HTTPException(404, "Tank not found")
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(tank, field, value)
    await session.commit()
    await session.refresh(tank)
    return tank


@router.delete("/{tank_id}", status_code=204)
async def delete_tank(tank_id: str, service: AlertService = Depends(get_alert_service)):
    await run_or_http(service.delete_tank(tank_id))


@router.post("/{tank_id}/readings", response_model=list[AlertOut], status_code=202)
async def push_reading(
    tank_id: str,
    data: ReadingIn,
    service: AlertService = Depends(get_alert_service),
):
    """HTTP push ingestion. Returns the alerts this reading opened."""
    reading = Reading(
        tank_id=tank_id,
        level=data.level,
        pressure=data.pressure,
        temperature=data.temperature,
        humidity=data.humidity,
        timestamp=data.timestamp or datetime.now(timezone.utc),
    )
    created = await run_or_http(service.process_reading(reading))
    return [alert_out(a) for a in created]
