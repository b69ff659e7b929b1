import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    # Ensure `import rbin...` works without installing the package.
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))


@pytest.fixture
def paste_dir(tmp_path: Path) -> Path:
    return tmp_path / "pastes"


@pytest.fixture
def store(paste_dir: Path):
    from rbin.storage import PasteStore

    return PasteStore(paste_dir)


@pytest.fixture
def client(paste_dir: Path):
    from fastapi.testclient import TestClient

    from rbin.config import Settings
    from rbin.main import create_app

    app = create_app(Settings(paste_dir=paste_dir, max_body_size=1024))
    with TestClient(app) as c:
        yield c
