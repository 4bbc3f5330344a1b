import pytest

from openhome.web.app import create_app
from openhome.web.storage import SaveStore


@pytest.fixture
def store(tmp_path):
    return SaveStore(str(tmp_path / "saves"), str(tmp_path / "meta"))


@pytest.fixture
def client(store):
    app = create_app({'TESTING': True, 'SAVE_STORE': store})
    with app.test_client() as c:
        yield c
