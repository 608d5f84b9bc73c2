# voxpost/conftest.py
import os
import sys
from pathlib import Path

import pytest

# Must be set before voxpost.core.config is imported
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("ENV", "test")
os.environ["BCRYPT_ROUNDS"] = "4"

# Add repo root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(autouse=True)
def db_url(tmp_path):
    """
    Point the engine at a fresh SQLite file for every test.

    All tables are created up front; the file is discarded with tmp_path.
    """
    from voxpost.core.database import create_all_tables, dispose_engine, init_engine

    url = f"sqlite:///{tmp_path / 'voxpost.db'}"
    init_engine(url)
    create_all_tables()
    yield url
    dispose_engine()


@pytest.fixture
def make_user():
    """Factory: create a user and optionally move it onto a plan."""
    from voxpost.features.plans.ledger import set_plan
    from voxpost.features.users.service import create_user

    counter = {"n": 0}

    def _make(plan_type="free", minutes=None, expires_at=None, email=None, password="correct-horse"):
        counter["n"] += 1
        user = create_user(email or f"user{counter['n']}@example.com", password)
        if plan_type != "free" or minutes is not None or expires_at is not None:
            user = set_plan(
                user.id,
                plan_type,
                minutes if minutes is not None else user.minutes_remaining,
                expires_at,
            )
        return user

    return _make
