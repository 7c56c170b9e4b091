"""HTTP boundary for Record-Guard (FastAPI)."""
