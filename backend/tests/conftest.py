import os
import sys


# Tests import `backend.app.*` / `backend.scripts.*`; pytest may be started from the
# repo root or from `backend/`, so put the repo root on sys.path either way.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)
