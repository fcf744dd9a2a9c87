import os
from pathlib import Path

# settings.py loads its config file at import time.
os.environ.setdefault("WATGBRIDGE_CONFIG", str(Path(__file__).resolve().parents[1] / "config.example.json"))
