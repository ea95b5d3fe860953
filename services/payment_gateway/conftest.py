# El servicio importa 'repo' como módulo de nivel superior; la DB de tests
# debe configurarse antes de esa importación.
import os
import sys
import tempfile
from pathlib import Path

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="payment-gateway-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/gateway.db"

SERVICE_DIR = str(Path(__file__).resolve().parent)
if SERVICE_DIR not in sys.path:
    sys.path.insert(0, SERVICE_DIR)


@pytest.fixture
def api():
    from fastapi.testclient import TestClient

    import main
    import repo

    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    return TestClient(main.app)
