"""Health endpoint and error envelope"""


def test_health_reports_simulation(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["simulationMode"] is True
    assert body["services"]["stt"] == "simulated"
    assert body["connections"] == 0


def test_assistant_text_endpoint(client):
    response = client.post("/api/assistant/text", json={"text": "Which machinery should I buy?", "language": "en"})
    assert response.status_code == 200
    body = response.json()
    assert "tractors" in body["response"]
    assert body["audioResponse"]


def test_assistant_voice_endpoint(client):
    response = client.post(
        "/api/assistant/voice",
        files={"audio": ("speech.webm", b"Any tips on soil?", "audio/webm")},
        data={"language": "te", "sessionId": "session_http"},
    )
    assert response.status_code == 200
    assert response.json()["text"] == "Any tips on soil?"


def test_assistant_voice_rejects_unknown_language(client):
    response = client.post(
        "/api/assistant/voice",
        files={"audio": ("speech.webm", b"hello", "audio/webm")},
        data={"language": "de"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Unsupported language"
