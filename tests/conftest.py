from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from medguard.database.db import Base, build_engine
from medguard.models import models  # registers tables on Base.metadata
from medguard.schemas.logs import LogDetails, LogRecord
from medguard.schemas.systems import ExternalSystemDescriptor


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'medguard-test.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def make_system():
    def _make(system_id=1, name="ECG Monitor", url=None, api_key="anon-key"):
        return ExternalSystemDescriptor(
            id=system_id,
            name=name,
            url=url or f"https://system-{system_id}.example.test",
            api_key=api_key
        )
    return _make


@pytest.fixture
def make_record():
    def _make(record_id="1", event_type="login", created_at=None, system_id=1, **details):
        ts = created_at or datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
        return LogRecord(
            id=str(record_id),
            system_id=system_id,
            event_type=event_type,
            created_at=ts,
            details=LogDetails.model_validate(details),
            raw_details=dict(details)
        )
    return _make


@pytest.fixture
def add_system(session_factory):
    """Insert an ExternalSystem row and return its id."""
    def _add(name, url=None, status="active", api_key="anon-key"):
        db = session_factory()
        try:
            row = models.ExternalSystem(
                name=name,
                url=url or f"https://{name.lower().replace(' ', '-')}.example.test",
                api_key=api_key,
                status=status
            )
            db.add(row)
            db.commit()
            return row.id
        finally:
            db.close()
    return _add
