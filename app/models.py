from sqlalchemy import (BigInteger, Column, Integer, Numeric, Text, DateTime, ForeignKey, JSON)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base

class Vehicle(Base):
    __tablename__ = "vehicles"
    id              = Column(Integer, primary_key=True, index=True)
    device_id       = Column(Text, unique=True, index=True, nullable=False)
    name            = Column(Text)
    tank_capacity_l = Column(Numeric)        # litres, per-vehicle
    price_per_liter = Column(Numeric)        # local currency
    km_per_liter    = Column(Numeric)        # used for live range estimate

class Trip(Base):
    __tablename__ = "trips"
    id                  = Column(BigInteger, primary_key=True, index=True)
    trip_id             = Column(Text, unique=True, index=True, nullable=False)
    device_id           = Column(Text, index=True, nullable=False)
    trip_name           = Column(Text)
    notes               = Column(Text)
    start_time          = Column(DateTime(timezone=True), nullable=False)
    end_time            = Column(DateTime(timezone=True), nullable=False)
    total_duration_s    = Column(Numeric)
    moving_duration_s   = Column(Numeric)
    idle_duration_s     = Column(Numeric)
    distance_km         = Column(Numeric, default=0)
    max_speed           = Column(Numeric)          # km/h
    fuel_start_percent  = Column(Numeric)
    fuel_last_percent   = Column(Numeric)
    fuel_used_l         = Column(Numeric)          # NULL when no fuel readings
    cost                = Column(Numeric)
    consumption_l100km  = Column(Numeric)
    closed_by           = Column(Text)             # manual / idle_timeout
    path                = Column(JSON)             # [{"lat","lng","t","speed"}, ...]
    created_at          = Column(DateTime(timezone=True), server_default=func.now())

    stops = relationship("TripStop", back_populates="trip", cascade="all, delete-orphan",
                         order_by="TripStop.stop_time")

class TripStop(Base):
    __tablename__ = "trip_stops"
    id          = Column(BigInteger, primary_key=True, index=True)
    trip_pk     = Column(BigInteger, ForeignKey("trips.id", ondelete="CASCADE"), index=True, nullable=False)
    lat         = Column(Numeric, nullable=False)
    lon         = Column(Numeric, nullable=False)
    stop_time   = Column(DateTime(timezone=True), nullable=False)
    resume_time = Column(DateTime(timezone=True), nullable=False)
    duration_s  = Column(Integer)

    trip = relationship("Trip", back_populates="stops")
