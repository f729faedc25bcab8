from __future__ import annotations


def test_health(client):
    body = client.get("/api/health").json()

    assert body["status"] == "healthy"


def test_firebase_health_reads_ping_document(client, db):
    assert client.get("/api/health/firebase").json()["status"] == "healthy"
    assert "_health/ping" in db.reads


def test_languages(client):
    assert client.get("/api/i18n/languages").json() == {"languages": ["english", "spanish"], "default": "english"}


def test_translation_table_falls_back_for_unknown_language(client):
    body = client.get("/api/i18n/klingon").json()

    assert body["language"] == "english"
    assert body["translations"]["nav.login"] == "Login"


def test_single_translation(client):
    assert client.get("/api/i18n/es/nav.login").json() == {
        "language": "spanish",
        "key": "nav.login",
        "value": "Iniciar Sesión",
    }
    assert client.get("/api/i18n/spanish/missing.key").json()["value"] == "missing.key"


def test_security_headers(client):
    response = client.get("/api/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"] == "no-store"
