import sys
from pathlib import Path


# Ensure the top-level modules import when running `pytest` from the repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))
