"""
Shared fixtures: isolated settings and singletons, plus a scripted AI.
"""
import json
import pytest
from csv_assistant.core.cache import get_summary_cache
from csv_assistant.core.config import reload_settings
from csv_assistant.core.performance import PerformanceMonitor
from csv_assistant.core.storage import reset_session_store
from csv_assistant.services import ai_client


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Fresh settings and singletons per test, with no real provider keys."""
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("AI_RETRY_DELAY_SECONDS", "0")
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    reload_settings()
    ai_client.reset_clients()
    reset_session_store()
    get_summary_cache().clear()
    PerformanceMonitor.clear_metrics()
    yield
    ai_client.reset_clients()
    reset_session_store()
    reload_settings()


class ScriptedAI:
    """
    Stand-in for ai_client.call_ai.

    Each system prompt maps to a queue of responses; a response is a string,
    a dict or list (JSON-encoded on the way out) or an exception to raise.
    The last response of a queue repeats once the queue is drained.
    """

    def __init__(self):
        self.scripts = {}
        self.calls = []

    def on(self, system_prompt, *responses):
        self.scripts[system_prompt] = list(responses)
        return self

    def calls_for(self, system_prompt):
        return [c for c in self.calls if c['system_prompt'] == system_prompt]

    async def __call__(self, prompt, system_prompt, schema=None, provider=None, json_mode=True, max_tokens=4096):
        self.calls.append({'prompt': prompt, 'system_prompt': system_prompt, 'json_mode': json_mode})
        queue = self.scripts.get(system_prompt)
        if not queue:
            raise AssertionError(f"Unexpected AI call with system prompt: {system_prompt[:60]}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, (dict, list)):
            return json.dumps(response)
        return response


@pytest.fixture
def fake_ai(monkeypatch):
    """Install a ScriptedAI and report AI as available."""
    scripted = ScriptedAI()
    monkeypatch.setattr(ai_client, "call_ai", scripted)
    monkeypatch.setattr(ai_client, "is_ai_available", lambda: True)
    return scripted


@pytest.fixture
def sales_rows():
    return [
        {"Region": "East", "Product": "A", "Sales": "100", "Units": "3"},
        {"Region": "West", "Product": "B", "Sales": "200", "Units": "5"},
        {"Region": "East", "Product": "B", "Sales": "50", "Units": "2"},
        {"Region": "North", "Product": "A", "Sales": "$1,000", "Units": "10"},
    ]
