from __future__ import annotations

import io
import time
from pathlib import Path

import jwt
import pandas as pd
import pytest

import auth
from settings import Settings
from template_model import CanvasData, ExcelData, TemplateField
from template_store import LocalTemplateStore

JWT_SECRET = "test-secret-with-enough-length-for-hs256"


@pytest.fixture()
def store(tmp_path: Path) -> LocalTemplateStore:
    return LocalTemplateStore(tmp_path / "templates_store")


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        template_store="local",
        template_store_dir=tmp_path / "templates_store",
        supabase_url="",
        supabase_anon_key="",
        supabase_jwt_secret=JWT_SECRET,
        google_spreadsheet_id="",
        google_service_account_file="",
        fonts_dir=tmp_path / "fonts",
        cors_origins=("http://localhost:5173",),
        log_level="INFO",
    )


@pytest.fixture()
def canvas() -> CanvasData:
    return CanvasData(
        width=800,
        height=600,
        elements=[
            TemplateField(id="name", text="Recipient", x=100, y=200, width=600, height=60,
                          font_size=36, mapped_column="Name"),
            TemplateField(id="course", text="Course", x=100, y=300, width=600, height=40,
                          mapped_column="Course"),
            TemplateField(id="footer", text="Issued by the Academy", x=100, y=500, width=600, height=30),
        ],
    )


@pytest.fixture()
def excel_data() -> ExcelData:
    return ExcelData(
        columns=["Name", "Course", "Date"],
        data=[
            ["Ada Lovelace", "Mathematics", "2024-05-01"],
            ["Alan Turing", "Computing"],
            ["Grace Hopper", "", "2024-06-12"],
        ],
        selected_sheet="Students",
    )


@pytest.fixture()
def make_token(monkeypatch):
    monkeypatch.setattr(auth, "SUPABASE_JWT_SECRET", JWT_SECRET)

    def _make(sub: str = "user-1", email: str = "user1@example.com", expires_in: int = 3600, **meta) -> str:
        claims = {
            "sub": sub,
            "email": email,
            "exp": int(time.time()) + expires_in,
            "user_metadata": meta,
        }
        return jwt.encode(claims, JWT_SECRET, algorithm="HS256")

    return _make


def xlsx_bytes(sheets: dict[str, list[list[object]]]) -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)
    return buf.getvalue()
