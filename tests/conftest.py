import os as _os
import sys
from dataclasses import replace

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from wop import db  # noqa: E402
from wop.settings import settings  # noqa: E402

from fake_cluster import FakeCluster  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Point the operator event log at a throwaway sqlite file."""
    monkeypatch.setattr(db, "settings", replace(settings, db_path=str(tmp_path / "wop.db")))
    db.init_db()
    yield


@pytest.fixture
def cluster():
    return FakeCluster()
