"""Psychologist model definitions."""

from sqlalchemy import Column, Integer, String
from scheduler.database import Base


class Psychologist(Base):
    """A provider whose weekly availability can be booked."""
    __tablename__ = "psychologists"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
