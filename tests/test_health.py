from fastapi.testclient import TestClient

from shop_translator.api.main import app


def test_health() -> None:
    c = TestClient(app)
    r = c.get('/health')
    assert r.status_code == 200
    body = r.json()
    assert body['status'] == 'ok'
    assert body['data']['service'] == 'shop-translator'


def test_health_envelope_meta() -> None:
    body = TestClient(app).get('/health').json()
    assert body['error'] is None
    assert set(body['meta']) == {'model_version', 'latency_ms'}
