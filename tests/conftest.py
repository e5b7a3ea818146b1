import re
import threading

import pytest

from shop_translator import config
from shop_translator.db import grant_credits, init_db
from shop_translator.eligibility import reset_schema_cache

_KEEP_RE = re.compile(r"(__PROTECTED_[A-Z_]+?_\d+__|\{\{.*?\}\}|\{%.*?%\}|<[^>]+>)", re.DOTALL)


def fake_translate(text: str) -> str:
    """Reverse every word outside tags, tokens and Liquid placeholders."""
    parts = _KEEP_RE.split(text)
    for i in range(0, len(parts), 2):
        parts[i] = re.sub(r"[A-Za-z]+", lambda m: m.group(0)[::-1].lower(), parts[i])
    return "".join(parts)


class ScriptedProvider:
    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler or (lambda text, target_locale, prompt_context: fake_translate(text))
        self.calls = []
        self._lock = threading.Lock()

    def invoke(self, text, target_locale, prompt_context):
        with self._lock:
            self.calls.append((text, target_locale, prompt_context))
            item = self.responses.pop(0) if self.responses else None
        if isinstance(item, Exception):
            raise item
        if item is not None:
            return item
        return self.handler(text, target_locale, prompt_context)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    db_path = tmp_path / "translator.db"
    schema_dir = tmp_path / "theme-schemas"
    (schema_dir / "sections").mkdir(parents=True, exist_ok=True)

    monkeypatch.setattr(config.settings, "database_path", str(db_path))
    monkeypatch.setattr(config.settings, "theme_schema_dir", str(schema_dir))
    monkeypatch.setattr(config.settings, "admin_api_token", "test-admin-token")
    monkeypatch.setattr(config.settings, "retry_base_delay_sec", 0.0)
    monkeypatch.setattr(config.settings, "sentry_dsn", "")

    reset_schema_cache()
    init_db()
    yield
    reset_schema_cache()


@pytest.fixture
def schema_dir(tmp_path):
    return tmp_path / "theme-schemas"


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def make_provider():
    return ScriptedProvider


@pytest.fixture
def funded_shop():
    grant_credits("shop-a", 130, note="seed")
    return "shop-a"
