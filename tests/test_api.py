"""
Integration tests for API endpoints.
"""
import pytest
from io import BytesIO
from fastapi.testclient import TestClient
from main import app
from csv_assistant.api import routes
from csv_assistant.core.config import reload_settings
from csv_assistant.core.schemas import AnalysisPlan
from csv_assistant.services.aggregation import execute_plan
from csv_assistant.services import ai_client, prompts

SALES_CSV = b"Region,Product,Sales\nEast,A,100\nWest,B,200\nEast,B,50\nNorth,A,1000\n"


@pytest.fixture
def client():
    """Create a test client with no live sessions and a fresh rate limit."""
    routes.reset_sessions()
    app.state.limiter.reset()
    yield TestClient(app)
    routes.reset_sessions()


def upload(client, content=SALES_CSV, filename="sales.csv", content_type="text/csv"):
    return client.post("/api/sessions", files={"file": (filename, BytesIO(content), content_type)})


@pytest.fixture
def session_id(client, monkeypatch):
    """A session created while no AI provider is available (profiling only)."""
    with monkeypatch.context() as patch:
        patch.setattr(ai_client, "is_ai_available", lambda: False)
        response = upload(client)
    assert response.status_code == 200
    return response.json()["session"]["session_id"]


@pytest.mark.integration
def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.integration
def test_root_endpoint(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    assert "message" in response.json()


@pytest.mark.integration
def test_security_and_correlation_headers(client):
    """Test security headers and the correlation id are set on responses."""
    response = client.get("/api/health")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Correlation-ID"]


@pytest.mark.integration
def test_upload_without_ai_profiles_only(client):
    """Test uploading without an AI provider profiles the columns and stops."""
    response = upload(client)

    assert response.status_code == 200
    data = response.json()
    assert data["row_count"] == 4
    session = data["session"]
    assert session["filename"] == "sales.csv"
    assert [p["name"] for p in session["column_profiles"]] == ["Region", "Product", "Sales"]
    assert session["analysis_cards"] == []
    assert session["progress_messages"][-1]["type"] == "error"
    assert "rows" not in session


@pytest.mark.integration
def test_upload_invalid_file_type(client):
    """Test uploading an unsupported file type."""
    response = upload(client, b"hello", filename="notes.txt", content_type="text/plain")
    assert response.status_code == 400


@pytest.mark.integration
def test_upload_file_too_large(client, monkeypatch):
    """Test file size validation."""
    monkeypatch.setenv("MAX_FILE_SIZE_MB", "1")
    reload_settings()
    content = b"name,value\n" + b"row,1\n" * 200_000
    response = upload(client, content, filename="large.csv")
    assert response.status_code == 413
    assert response.json()["detail"]["code"] == "FILE_TOO_LARGE"


@pytest.mark.integration
def test_unknown_session_is_404(client):
    """Test an unknown session id returns SESSION_NOT_FOUND."""
    response = client.get("/api/sessions/does-not-exist")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "SESSION_NOT_FOUND"


@pytest.mark.integration
def test_session_is_restored_from_store(client, session_id):
    """Test a session missing from memory is restored from the store."""
    routes.reset_sessions()
    response = client.get(f"/api/sessions/{session_id}")
    assert response.status_code == 200
    assert response.json()["session"]["session_id"] == session_id


@pytest.mark.integration
def test_delete_session(client, session_id):
    """Test deleting a session makes it unreachable."""
    assert client.delete(f"/api/sessions/{session_id}").json() == {"deleted": True}
    assert client.get(f"/api/sessions/{session_id}").status_code == 404


@pytest.mark.integration
def test_chat_turn(client, session_id, fake_ai):
    """Test a chat turn returns the result and the updated history."""
    fake_ai.on(prompts.SYSTEM_CHAT, {"actions": [
        {"responseType": "text_response", "thought": "Simple answer", "text": "North has the highest sales."},
    ]})

    response = client.post(f"/api/sessions/{session_id}/chat", json={"message": "Which region sells most?"})

    assert response.status_code == 200
    data = response.json()
    assert data["result"]["status"] == "completed"
    assert [m["text"] for m in data["session"]["chat_history"]] == [
        "Which region sells most?", "North has the highest sales."
    ]


@pytest.mark.integration
def test_chat_rejects_empty_message(client, session_id):
    """Test an empty chat message is rejected by request validation."""
    response = client.post(f"/api/sessions/{session_id}/chat", json={"message": ""})
    assert response.status_code == 422


@pytest.mark.integration
def test_clarification_without_pending_request(client, session_id):
    """Test answering when nothing is pending reports a failed turn."""
    response = client.post(f"/api/sessions/{session_id}/clarification", json={"label": "Sales", "value": "Sales"})
    assert response.status_code == 200
    assert response.json()["result"]["status"] == "failed"


@pytest.mark.integration
def test_filter_and_rows(client, session_id, fake_ai):
    """Test applying and clearing the spreadsheet filter."""
    fake_ai.on(prompts.SYSTEM_FILTER, {"explanation": "Region is East", "jsFunctionBody": "return row['Region'] == 'East'"})

    response = client.post(f"/api/sessions/{session_id}/filter", json={"query": "only the east"})
    assert response.status_code == 200
    assert response.json()["filter"]["jsFunctionBody"] == "return row['Region'] == 'East'"

    rows = client.get(f"/api/sessions/{session_id}/rows").json()
    assert (rows["total"], rows["filtered"]) == (4, 2)

    client.delete(f"/api/sessions/{session_id}/filter")
    rows = client.get(f"/api/sessions/{session_id}/rows").json()
    assert rows["filtered"] == 4


@pytest.mark.integration
def test_metrics_endpoint(client):
    """Test metrics expose per-route timings and cache stats."""
    client.get("/api/health")
    response = client.get("/api/metrics")
    assert response.status_code == 200
    data = response.json()
    assert "http GET /api/health" in data["performance"]
    assert "summary_cache" in data["cache"]
    assert "live_sessions" in data["cache"]


@pytest.mark.integration
def test_live_sessions_are_bounded_and_restored(client, monkeypatch):
    """Least recently used sessions leave memory but stay reachable through the store."""
    monkeypatch.setenv("MAX_LIVE_SESSIONS", "2")
    reload_settings()
    routes.reset_sessions()
    monkeypatch.setattr(ai_client, "is_ai_available", lambda: False)

    ids = [upload(client).json()["session"]["session_id"] for _ in range(3)]

    stats = routes.live_sessions().get_stats()
    assert (stats["size"], stats["evictions"]) == (2, 1)
    response = client.get(f"/api/sessions/{ids[0]}")
    assert response.status_code == 200
    assert response.json()["session"]["session_id"] == ids[0]
    assert routes.live_sessions().get_stats()["size"] == 2


@pytest.mark.integration
def test_delete_drops_the_live_session(client, session_id):
    """Deleting a session removes it from memory as well as from the store."""
    client.delete(f"/api/sessions/{session_id}")
    assert routes.live_sessions().get(session_id) is None


@pytest.mark.integration
def test_card_view_applies_top_n(client, session_id):
    """The card endpoint returns the rows as displayed, with the tail folded into Others."""
    orchestrator = routes.get_orchestrator(session_id)
    plan = AnalysisPlan.model_validate({
        "chartType": "bar", "title": "Sales by Region", "aggregation": "sum",
        "groupByColumn": "Region", "valueColumn": "Sales",
    })
    card = orchestrator._build_card(plan, execute_plan(orchestrator.state.rows, plan), "", card_id="card-1")
    card.top_n = 2
    orchestrator.state.analysis_cards.append(card)

    response = client.get(f"/api/sessions/{session_id}/cards/card-1")

    assert response.status_code == 200
    assert response.json()["display_data"] == [
        {"Region": "North", "Sales": 1000.0}, {"Region": "Others", "Sales": 350.0}
    ]
    assert len(response.json()["card"]["aggregated_data"]) == 3


@pytest.mark.integration
def test_unknown_card_is_404(client, session_id):
    """A card id the session does not have is reported as CARD_NOT_FOUND."""
    response = client.get(f"/api/sessions/{session_id}/cards/card-404")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "CARD_NOT_FOUND"
