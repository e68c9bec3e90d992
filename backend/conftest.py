"""Pytest configuration. Puts backend/ on sys.path so tests import api.*, connectors.*, services.*, etc."""
import os
import sys
from pathlib import Path

_backend: Path = Path(__file__).resolve().parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

# Tests never reach a real database or broker; keep table creation off
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
