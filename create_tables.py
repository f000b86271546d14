"""
Create the order and return-tracking tables from SQLAlchemy models.
Run once against a fresh database; the API also creates missing tables on startup.
"""
from app.database import engine, Base
from app import models  # noqa: F401 - register all models with Base

Base.metadata.create_all(bind=engine)
print("Order and return tracking tables created (or already exist).")
