print("🔥 seed.py started...")
from medguard.database.db import SessionLocal, Base, engine
from medguard.models.models import ExternalSystem

# create tables (safe)
Base.metadata.create_all(bind=engine)

DEMO_SYSTEMS = [
    {
        "name": "ECG Monitor",
        "system_type": "Medical Device",
        "description": "Ward 3 ECG telemetry gateway",
        "url": "https://ecg-monitor.example.supabase.co",
        "api_key": "replace-with-anon-key"
    },
    {
        "name": "Infusion Pump Hub",
        "system_type": "Medical Device",
        "description": "Central infusion pump management service",
        "url": "https://infusion-hub.example.supabase.co",
        "api_key": "replace-with-anon-key",
        "status": "inactive"
    },
]


def seed_data():
    db = SessionLocal()
    try:
        created = 0
        for entry in DEMO_SYSTEMS:
            # ----------------------------
            # Insert external systems once
            # ----------------------------
            exists = db.query(ExternalSystem).filter(ExternalSystem.name == entry["name"]).first()
            if exists:
                continue
            db.add(ExternalSystem(**entry))
            created += 1
        db.commit()
    finally:
        db.close()
    print(f"✅ Demo systems inserted: {created}")


if __name__ == "__main__":
    seed_data()
