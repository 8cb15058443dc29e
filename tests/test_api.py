import io
import zipfile

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfReader

from app_server import create_app
from conftest import xlsx_bytes
from errors import PersistenceError
from template_store import LocalTemplateStore


@pytest.fixture()
def client(settings, store):
    with TestClient(create_app(settings, store)) as test_client:
        yield test_client


@pytest.fixture()
def headers(make_token):
    return {"Authorization": f"Bearer {make_token('user-1', full_name='Ada Lovelace')}"}


@pytest.fixture()
def other_headers(make_token):
    return {"Authorization": f"Bearer {make_token('user-2', email='user2@example.com')}"}


@pytest.fixture()
def template_id(client, headers, canvas, excel_data):
    response = client.post(
        "/api/templates",
        json={
            "name": "Award",
            "canvasData": canvas.model_dump(mode="json", by_alias=True),
            "excelData": excel_data.model_dump(mode="json", by_alias=True),
        },
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_health_is_public(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_missing_token_is_401(client):
    response = client.get("/api/templates")
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_expired_token_is_401(client, make_token):
    token = make_token(expires_in=-60)
    response = client.get("/api/templates", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert "expired" in response.json()["detail"]


def test_garbage_token_is_401(client, make_token):
    make_token()
    response = client.get("/api/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert response.status_code == 401


def test_me(client, headers):
    body = client.get("/api/me", headers=headers).json()
    assert body["id"] == "user-1"
    assert body["name"] == "Ada Lovelace"
    assert body["email"] == "user1@example.com"


def test_fonts(client, headers):
    fonts = client.get("/api/fonts", headers=headers).json()["fonts"]
    assert "Arial" in fonts


def test_parse_single_sheet_workbook(client, headers):
    data = xlsx_bytes({"Students": [["Name", "Course"], ["Ada", "Maths"]]})
    response = client.post(
        "/api/sheets/parse",
        files={"file": ("students.xlsx", data, "application/octet-stream")},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["selectedSheet"] == "Students"
    assert body["sheets"][0]["columns"] == ["Name", "Course"]
    assert body["sheets"][0]["rows"] == [["Ada", "Maths"]]


def test_parse_rejects_unknown_extension(client, headers):
    response = client.post(
        "/api/sheets/parse",
        files={"file": ("notes.txt", b"Name\nAda\n", "text/plain")},
        headers=headers,
    )
    assert response.status_code == 400


def test_parse_rejects_junk_content(client, headers):
    response = client.post(
        "/api/sheets/parse",
        files={"file": ("students.csv", b"\xff\xfe\x00junk", "text/csv")},
        headers=headers,
    )
    assert response.status_code == 400


def test_create_requires_name(client, headers):
    response = client.post("/api/templates", json={"name": "  "}, headers=headers)
    assert response.status_code == 400


def test_create_validates_body(client, headers):
    response = client.post("/api/templates", json={"canvasData": {}}, headers=headers)
    assert response.status_code == 422
    assert response.json()["message"] == "Request validation failed."


def test_template_crud(client, headers, template_id):
    listed = client.get("/api/templates", headers=headers).json()
    assert [t["id"] for t in listed] == [template_id]
    assert listed[0]["ownerId"] == "user-1"
    assert listed[0]["canvasData"]["elements"][0]["mappedColumn"] == "Name"

    assert client.get(f"/api/templates/{template_id}", headers=headers).json()["name"] == "Award"
    assert client.get("/api/templates/stats", headers=headers).json() == {"templatesCreated": 1}

    response = client.delete(f"/api/templates/{template_id}", headers=headers)
    assert response.status_code == 200
    assert client.get("/api/templates", headers=headers).json() == []
    assert client.get(f"/api/templates/{template_id}", headers=headers).status_code == 404


def test_templates_are_owner_scoped(client, headers, other_headers, template_id):
    assert client.get("/api/templates", headers=other_headers).json() == []
    assert client.get(f"/api/templates/{template_id}", headers=other_headers).status_code == 404
    assert client.delete(f"/api/templates/{template_id}", headers=other_headers).status_code == 404
    assert len(client.get("/api/templates", headers=headers).json()) == 1


def test_search(client, headers, template_id):
    body = client.post(
        f"/api/templates/{template_id}/search", json={"term": "COMPUTING"}, headers=headers
    ).json()
    assert body["visible"] is True
    assert body["rows"] == [["Alan Turing", "Computing"]]

    blank = client.post(f"/api/templates/{template_id}/search", json={"term": " "}, headers=headers)
    assert blank.json()["visible"] is False


def test_apply_row_merges(client, headers, template_id):
    first = client.post(
        f"/api/templates/{template_id}/apply-row", json={"rowIndex": 0}, headers=headers
    ).json()["fillState"]
    assert first["element_name"] == "Ada Lovelace"

    second = client.post(
        f"/api/templates/{template_id}/apply-row",
        json={"rowIndex": 2, "fillState": first},
        headers=headers,
    ).json()["fillState"]
    assert second["element_name"] == "Grace Hopper"
    assert second["element_course"] == "Mathematics"


def test_apply_row_with_explicit_row(client, headers, template_id):
    state = client.post(
        f"/api/templates/{template_id}/apply-row",
        json={"row": ["Someone", "Art"]},
        headers=headers,
    ).json()["fillState"]
    assert state["element_course"] == "Art"


def test_apply_row_bad_index(client, headers, template_id):
    response = client.post(
        f"/api/templates/{template_id}/apply-row", json={"rowIndex": 99}, headers=headers
    )
    assert response.status_code == 400


def test_preview(client, headers, template_id):
    body = client.post(
        f"/api/templates/{template_id}/preview",
        json={"fillState": {"element_name": "Ada"}},
        headers=headers,
    ).json()
    preview, export = body["preview"], body["exportSource"]
    assert preview["width"] == pytest.approx(480)
    assert export["width"] == 800
    assert preview["elements"][0]["text"] == "Ada"
    assert preview["elements"][1]["text"] == "Course"
    assert preview["elements"][0]["geometry"]["font_size"] == pytest.approx(21.6)


def test_export_pdf(client, headers, template_id):
    response = client.post(
        f"/api/templates/{template_id}/export?format=pdf", json={}, headers=headers
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert 'filename="certificate.pdf"' in response.headers["content-disposition"]
    box = PdfReader(io.BytesIO(response.content)).pages[0].mediabox
    assert float(box.width) > float(box.height)


def test_export_png(client, headers, template_id):
    response = client.post(
        f"/api/templates/{template_id}/export?format=png", json={}, headers=headers
    )
    assert response.headers["content-type"] == "image/png"
    assert response.content.startswith(b"\x89PNG")


def test_export_bad_format(client, headers, template_id):
    response = client.post(
        f"/api/templates/{template_id}/export?format=gif", json={}, headers=headers
    )
    assert response.status_code == 400


def test_export_batch(client, headers, template_id):
    response = client.post(f"/api/templates/{template_id}/export-batch?format=jpg", headers=headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    with zipfile.ZipFile(io.BytesIO(response.content)) as zipf:
        assert len(zipf.namelist()) == 3


def test_store_failure_is_502(settings, tmp_path, headers):
    class BrokenStore(LocalTemplateStore):
        def list(self, owner_id):
            raise PersistenceError("store offline")

    with TestClient(create_app(settings, BrokenStore(tmp_path))) as client:
        response = client.get("/api/templates", headers=headers)
    assert response.status_code == 502
    assert response.json() == {"detail": "store offline"}
