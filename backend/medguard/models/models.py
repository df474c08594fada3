from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text
from sqlalchemy.sql import func
from medguard.database.db import Base

class ExternalSystem(Base):
    __tablename__ = "external_systems"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    system_type = Column(String, default="Medical Device")
    description = Column(Text)
    url = Column(String, nullable=False)
    api_key = Column(String, nullable=False)
    status = Column(String, default="active") # active, inactive, error
    last_sync = Column(DateTime(timezone=True))
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class ThreatAlert(Base):
    __tablename__ = "threat_alerts"

    id = Column(Integer, primary_key=True, index=True)
    system_id = Column(Integer, index=True, nullable=False)
    system_name = Column(String, nullable=False)
    rule_id = Column(String, nullable=False)
    event_type = Column(String, index=True, nullable=False)
    severity = Column(String, index=True, nullable=False) # low, medium, high, critical
    description = Column(Text)
    source_record_id = Column(String, nullable=False)
    source_timestamp = Column(DateTime(timezone=True), index=True, nullable=False)
    is_resolved = Column(Boolean, default=False, nullable=False)
    fingerprint = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class ReportRecord(Base):
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String, index=True, nullable=False) # alerts, logs
    title = Column(String, nullable=False)
    export_format = Column(String, default="csv")
    row_count = Column(Integer, default=0)
    summary_json = Column(Text)
    generated_at = Column(DateTime(timezone=True), server_default=func.now())
