from fastapi.testclient import TestClient

from shop_translator.api.main import app
from shop_translator.config import settings


def test_version() -> None:
    c = TestClient(app)
    r = c.get('/version')
    assert r.status_code == 200
    assert r.json()['data']['version'] == settings.app_version
