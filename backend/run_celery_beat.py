#!/usr/bin/env python3
# backend/run_celery_beat.py
"""
Development Celery beat runner; schedules the no-show sweep and the
optional auto-confirm and deferred reconciliation jobs.
"""
from pathlib import Path
import subprocess
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

if __name__ == "__main__":
    cmd = [sys.executable, "-m", "celery", "-A", "clinic_booking.tasks.celery_app", "beat", "--loglevel=info"]
    subprocess.run(cmd, cwd=backend_dir)
