import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's proxy and OpenRouter settings out of tests."""

    for key in list(os.environ):
        if key.startswith("CHAT_PROXY_") or key.startswith("OPENROUTER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("DEBUG", raising=False)
    yield
