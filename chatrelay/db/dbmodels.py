from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Transcript(Base):
    __tablename__ = "transcripts"

    id = Column(Integer, primary_key=True, index=True)
    prompt = Column(Text, nullable=False)
    reply = Column(Text, nullable=False)
    source = Column(String, nullable=False)
    session_id = Column(String, index=True, nullable=True)  # Anonymous turns have none
    created_at = Column(DateTime, index=True, nullable=False)


class Visitor(Base):
    __tablename__ = "visitors"

    id = Column(Integer, primary_key=True, index=True)
    visitor_id = Column(String, unique=True, index=True, nullable=False)
    ip = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)  # Store browser/device info
    country = Column(String, nullable=True)
    city = Column(String, nullable=True)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False)
    last_seen_at = Column(DateTime, nullable=False)
