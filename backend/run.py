#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Uses a local SQLite file unless DATABASE_URL is already set.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("DATABASE_URL", "sqlite:///./clinic_booking_dev.db")

import uvicorn

if __name__ == "__main__":
    print("Starting clinic booking API at http://localhost:8000 (docs at /docs)")
    uvicorn.run("clinic_booking.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
