"""End-to-end tests of the REST API through the full middleware stack."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from starlette.testclient import TestClient

ISTRUTTORE = ("anna.bianchi", ("istruttore",))
DIRIGENTE = ("mario.rossi", ("dirigente",))
RAGIONIERE = ("luca.verdi", ("ragioniere",))
ADMIN = ("admin", ("admin",))


def _current_year() -> int:
    return datetime.now(ZoneInfo("Europe/Rome")).year


def _create(client: TestClient, auth_header, body: dict | None = None, who=ISTRUTTORE) -> dict:
    response = client.post(
        "/determinazioni",
        json=body or {"oggetto": "Acquisto materiale di cancelleria", "importo": "1500.50"},
        headers=auth_header(*who),
    )
    assert response.status_code == 201, response.text
    return response.json()


def _set_stato(client: TestClient, auth_header, record_id: int, stato: str, who=DIRIGENTE):
    return client.put(
        f"/determinazioni/{record_id}/stato",
        json={"stato": stato},
        headers=auth_header(*who),
    )


def test_health_is_public(client: TestClient) -> None:
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/ready").json() == {"status": "ready"}


def test_missing_token_is_401(client: TestClient) -> None:
    response = client.get("/determinazioni")

    assert response.status_code == 401
    assert response.json()["error"] == "missing_token"
    assert response.headers["WWW-Authenticate"].startswith("Bearer ")


def test_invalid_token_is_401(client: TestClient) -> None:
    response = client.get("/determinazioni", headers={"Authorization": "Bearer garbage"})

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_token"


def test_token_signed_with_other_secret(client: TestClient, issue_token) -> None:
    token = issue_token(secret="z" * 48)

    response = client.get("/determinazioni", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_expired_token(client: TestClient, issue_token) -> None:
    token = issue_token(expires_in=-600)

    response = client.get("/determinazioni", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["error"] == "token_expired"


def test_request_id_is_echoed(client: TestClient, auth_header) -> None:
    response = client.get(
        "/determinazioni",
        headers={**auth_header(*ISTRUTTORE), "X-Request-ID": "req-123"},
    )

    assert response.headers["X-Request-ID"] == "req-123"


def test_create_assigns_number(client: TestClient, auth_header) -> None:
    year = _current_year()

    first = _create(client, auth_header)
    second = _create(client, auth_header, {"oggetto": "Secondo atto"})

    assert first["numero"] == f"DET-{year}-001"
    assert second["numero"] == f"DET-{year}-002"
    assert first["stato"] == "BOZZA"
    assert first["dataPubblicazione"] is None
    assert first["dirigente"] == "anna.bianchi"
    assert first["importo"] == 1500.5


def test_create_sets_location(client: TestClient, auth_header) -> None:
    response = client.post(
        "/determinazioni", json={"oggetto": "Atto"}, headers=auth_header(*DIRIGENTE)
    )

    assert response.status_code == 201
    assert response.headers["Location"] == f"/determinazioni/{response.json()['id']}"


def test_create_requires_preparer_or_manager(client: TestClient, auth_header) -> None:
    response = client.post(
        "/determinazioni", json={"oggetto": "Atto"}, headers=auth_header(*RAGIONIERE)
    )

    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


@pytest.mark.parametrize(
    "body",
    [
        {"oggetto": ""},
        {"importo": 100},
        {"oggetto": "Atto", "importo": -5},
        {"oggetto": "Atto", "livelloDirigente": "D7"},
    ],
)
def test_create_rejects_invalid_body(client: TestClient, auth_header, body) -> None:
    response = client.post("/determinazioni", json=body, headers=auth_header(*ISTRUTTORE))

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


@pytest.mark.parametrize("content", ["", "{not json", "[1, 2]"])
def test_create_rejects_malformed_json(client: TestClient, auth_header, content) -> None:
    response = client.post(
        "/determinazioni",
        content=content,
        headers={**auth_header(*ISTRUTTORE), "Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_list_and_get(client: TestClient, auth_header) -> None:
    created = _create(client, auth_header)

    listed = client.get("/determinazioni", headers=auth_header(*RAGIONIERE))
    fetched = client.get(f"/determinazioni/{created['id']}", headers=auth_header(*RAGIONIERE))

    assert listed.status_code == 200
    assert [r["numero"] for r in listed.json()] == [created["numero"]]
    assert fetched.json() == created


def test_get_unknown_is_404(client: TestClient, auth_header) -> None:
    response = client.get("/determinazioni/999", headers=auth_header(*ISTRUTTORE))

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_get_non_numeric_id_is_400(client: TestClient, auth_header) -> None:
    response = client.get("/determinazioni/abc", headers=auth_header(*ISTRUTTORE))

    assert response.status_code == 400


def test_put_stato_publish_sets_date(client: TestClient, auth_header) -> None:
    created = _create(client, auth_header)

    for stato in ("ISTRUTTORIA", "VISTO_CONTABILE", "FIRMATA"):
        response = _set_stato(client, auth_header, created["id"], stato)
        assert response.status_code == 200, response.text
        assert response.json()["dataPubblicazione"] is None

    published = _set_stato(client, auth_header, created["id"], "PUBBLICATA")

    assert published.status_code == 200
    assert published.json()["stato"] == "PUBBLICATA"
    assert published.json()["dataPubblicazione"] is not None


def test_put_stato_requires_manager(client: TestClient, auth_header) -> None:
    created = _create(client, auth_header)

    response = _set_stato(client, auth_header, created["id"], "ISTRUTTORIA", who=ISTRUTTORE)

    assert response.status_code == 403


@pytest.mark.parametrize("body", [{}, {"stato": ""}, {"stato": "   "}, {"stato": 3}])
def test_put_stato_blank_is_400(client: TestClient, auth_header, body) -> None:
    created = _create(client, auth_header)

    response = client.put(
        f"/determinazioni/{created['id']}/stato", json=body, headers=auth_header(*DIRIGENTE)
    )

    assert response.status_code == 400
    assert "stato" in response.json()["message"]


def test_put_stato_unknown_is_400(client: TestClient, auth_header) -> None:
    created = _create(client, auth_header)

    response = _set_stato(client, auth_header, created["id"], "ARCHIVIATA")

    assert response.status_code == 400


def test_put_stato_unknown_id_is_404(client: TestClient, auth_header) -> None:
    response = _set_stato(client, auth_header, 5, "PUBBLICATA")

    assert response.status_code == 404


def test_put_stato_illegal_transition_is_409(client: TestClient, auth_header) -> None:
    created = _create(client, auth_header)

    response = _set_stato(client, auth_header, created["id"], "PUBBLICATA")

    assert response.status_code == 409
    assert response.json()["error"] == "invalid_transition"


def test_lifecycle_events_are_recorded(client: TestClient, auth_header) -> None:
    created = _create(client, auth_header, {"oggetto": "Atto", "processInstanceId": "proc-9"})
    for stato in ("ISTRUTTORIA", "VISTO_CONTABILE", "FIRMATA", "PUBBLICATA"):
        assert _set_stato(client, auth_header, created["id"], stato).status_code == 200

    response = client.get(
        "/audit", params={"processInstanceId": "proc-9"}, headers=auth_header(*ADMIN)
    )

    assert response.status_code == 200
    events = response.json()
    assert [e["eventType"] for e in reversed(events)] == [
        "ATTO_CREATO",
        "STATO_AGGIORNATO",
        "STATO_AGGIORNATO",
        "STATO_AGGIORNATO",
        "ATTO_PUBBLICATO",
    ]
    assert events[0]["userId"] == "mario.rossi"
    assert events[-1]["userId"] == "anna.bianchi"


def test_events_fall_back_to_numero(client: TestClient, auth_header) -> None:
    created = _create(client, auth_header)

    response = client.get(
        "/audit", params={"processInstanceId": created["numero"]}, headers=auth_header(*ADMIN)
    )

    assert [e["eventType"] for e in response.json()] == ["ATTO_CREATO"]


def test_audit_query_requires_admin(client: TestClient, auth_header) -> None:
    response = client.get("/audit", headers=auth_header(*DIRIGENTE))

    assert response.status_code == 403


def test_audit_append_uses_server_timestamp(client: TestClient, auth_header) -> None:
    response = client.post(
        "/audit",
        json={
            "eventType": "TASK_COMPLETATO",
            "processInstanceId": "proc-1",
            "timestamp": "1999-12-31T23:59:59Z",
            "details": "{\"task\": \"firma\"}",
        },
        headers=auth_header(*RAGIONIERE),
    )

    assert response.status_code == 201
    event = response.json()
    assert event["userId"] == "luca.verdi"
    assert not event["timestamp"].startswith("1999")


def test_audit_append_requires_event_type(client: TestClient, auth_header) -> None:
    response = client.post("/audit", json={"details": "x"}, headers=auth_header(*ISTRUTTORE))

    assert response.status_code == 400


def test_audit_filters_are_conjunctive(client: TestClient, auth_header) -> None:
    for pid, user in [("p-1", "u1"), ("p-1", "u2"), ("p-2", "u1")]:
        client.post(
            "/audit",
            json={"eventType": "E", "processInstanceId": pid, "userId": user},
            headers=auth_header(*ISTRUTTORE),
        )

    response = client.get(
        "/audit",
        params={"processInstanceId": "p-1", "userId": "u1"},
        headers=auth_header(*ADMIN),
    )

    events = response.json()
    assert len(events) == 1
    assert (events[0]["processInstanceId"], events[0]["userId"]) == ("p-1", "u1")


def test_audit_date_filters(client: TestClient, auth_header) -> None:
    client.post("/audit", json={"eventType": "E"}, headers=auth_header(*ISTRUTTORE))
    today = datetime.now(ZoneInfo("Europe/Rome")).date().isoformat()

    in_range = client.get(
        "/audit", params={"from": today, "to": today}, headers=auth_header(*ADMIN)
    )
    before = client.get("/audit", params={"to": "2000-01-01"}, headers=auth_header(*ADMIN))

    assert len(in_range.json()) == 1
    assert before.json() == []


@pytest.mark.parametrize(
    "params", [{"from": "yesterday"}, {"from": "2026-05-02", "to": "2026-05-01"}]
)
def test_audit_bad_date_filters_are_400(client: TestClient, auth_header, params) -> None:
    response = client.get("/audit", params=params, headers=auth_header(*ADMIN))

    assert response.status_code == 400


def test_get_decisions(client: TestClient, auth_header) -> None:
    response = client.get("/decisions", headers=auth_header(*RAGIONIERE))

    assert response.status_code == 200
    (decision,) = response.json()
    assert decision["id"] == "verifica-competenza"
    assert decision["numeroRegole"] == 3


def test_get_normativa(client: TestClient, auth_header) -> None:
    response = client.get(
        "/normativa", params={"q": "impegno di spesa"}, headers=auth_header(*ISTRUTTORE)
    )

    body = response.json()
    assert len(body["riferimenti"]) == 5
    assert body["richiedePubblicazione"] is True


def test_reference_data_requires_token(client: TestClient) -> None:
    assert client.get("/decisions").status_code == 401


def test_admin_requires_admin(client: TestClient, auth_header) -> None:
    assert client.get("/admin/utenti", headers=auth_header(*DIRIGENTE)).status_code == 403


def test_admin_list_users(client: TestClient, auth_header) -> None:
    response = client.get("/admin/utenti", headers=auth_header(*ADMIN))

    assert response.status_code == 200
    assert response.json() == []


def test_admin_create_user(client: TestClient, auth_header) -> None:
    missing = client.post("/admin/utenti", json={"email": "x"}, headers=auth_header(*ADMIN))
    created = client.post(
        "/admin/utenti", json={"username": "nuovo.utente"}, headers=auth_header(*ADMIN)
    )

    assert missing.status_code == 400
    assert created.status_code == 201
    assert created.json()["username"] == "nuovo.utente"


def test_admin_update_user(client: TestClient, auth_header) -> None:
    empty = client.put("/admin/utenti/u-1", json={}, headers=auth_header(*ADMIN))
    updated = client.put(
        "/admin/utenti/u-1", json={"firstName": "Anna"}, headers=auth_header(*ADMIN)
    )

    assert empty.status_code == 400
    assert updated.status_code == 204


def test_admin_assign_roles(client: TestClient, auth_header) -> None:
    missing = client.put("/admin/utenti/u-1/ruoli", json={"x": 1}, headers=auth_header(*ADMIN))
    assigned = client.put(
        "/admin/utenti/u-1/ruoli", json={"ruoli": ["istruttore"]}, headers=auth_header(*ADMIN)
    )

    assert missing.status_code == 400
    assert assigned.status_code == 204


def test_admin_reset_password(client: TestClient, auth_header) -> None:
    response = client.post("/admin/utenti/u-1/reset-password", headers=auth_header(*ADMIN))

    assert response.status_code == 204
