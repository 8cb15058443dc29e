"""Template persistence backends.

Every backend exposes the same owner-scoped contract: ``create``, ``list``
(newest first) and ``delete``. A record is only visible to, and deletable by,
its owner; asking for someone else's id behaves exactly like a missing id.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import requests

from errors import NotFoundError, PersistenceError
from template_model import CanvasData, ExcelData, TemplateRecord

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def newest_first(records: list[TemplateRecord]) -> list[TemplateRecord]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)


class TemplateStore(ABC):
    @abstractmethod
    def create(
        self,
        owner_id: str,
        name: str,
        canvas_data: CanvasData,
        excel_data: ExcelData,
    ) -> TemplateRecord: ...

    @abstractmethod
    def list(self, owner_id: str) -> list[TemplateRecord]: ...

    @abstractmethod
    def delete(self, template_id: str, owner_id: str) -> None: ...

    def get(self, template_id: str, owner_id: str) -> TemplateRecord:
        for record in self.list(owner_id):
            if record.id == template_id:
                return record
        raise NotFoundError(f"Template not found: {template_id}")

    def count(self, owner_id: str) -> int:
        return len(self.list(owner_id))


class LocalTemplateStore(TemplateStore):
    """One JSON file per template under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, template_id: str) -> Path:
        # ids are generated here, but never trust them as path components
        return self.directory / f"{Path(template_id).name}.json"

    def _read(self, path: Path) -> TemplateRecord:
        try:
            return TemplateRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Unreadable template file {path.name}: {exc}") from exc

    def create(self, owner_id, name, canvas_data, excel_data) -> TemplateRecord:
        now = utc_now()
        record = TemplateRecord(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            name=name,
            canvas_data=canvas_data.model_copy(deep=True),
            excel_data=excel_data.model_copy(deep=True),
            created_at=now,
            updated_at=now,
        )
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._path(record.id).write_text(
                record.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
            )
        except OSError as exc:
            raise PersistenceError(f"Failed to save template: {exc}") from exc
        logger.info("Saved template %s for owner %s", record.id, owner_id)
        return record

    def list(self, owner_id: str) -> list[TemplateRecord]:
        if not self.directory.exists():
            return []
        records = [self._read(p) for p in self.directory.glob("*.json")]
        return newest_first([r for r in records if r.owner_id == owner_id])

    def delete(self, template_id: str, owner_id: str) -> None:
        path = self._path(template_id)
        if not path.exists() or self._read(path).owner_id != owner_id:
            raise NotFoundError(f"Template not found: {template_id}")
        try:
            path.unlink()
        except OSError as exc:
            raise PersistenceError(f"Failed to delete template: {exc}") from exc
        logger.info("Deleted template %s for owner %s", template_id, owner_id)


class SupabaseTemplateStore(TemplateStore):
    """``templates`` table through the Supabase REST (PostgREST) endpoint."""

    table = "templates"

    def __init__(
        self,
        url: str,
        api_key: str,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{self.table}"
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )
        self.timeout = timeout

    def _request(self, method: str, **kwargs: Any) -> Any:
        try:
            response = self.session.request(method, self.endpoint, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("Supabase %s failed: %s", method, exc)
            raise PersistenceError(f"Template store unreachable: {exc}") from exc
        if response.status_code >= 400:
            logger.error("Supabase %s returned %s: %s", method, response.status_code, response.text)
            raise PersistenceError(
                f"Template store rejected {method} ({response.status_code}): {response.text}"
            )
        if not response.content:
            return []
        return response.json()

    @staticmethod
    def _to_record(row: dict[str, Any]) -> TemplateRecord:
        return TemplateRecord(
            id=str(row["id"]),
            owner_id=row["user_id"],
            name=row["name"],
            canvas_data=row.get("canvas_data") or {},
            excel_data=row.get("excel_data") or {},
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
        )

    def create(self, owner_id, name, canvas_data, excel_data) -> TemplateRecord:
        rows = self._request(
            "POST",
            json={
                "user_id": owner_id,
                "name": name,
                "canvas_data": canvas_data.model_dump(mode="json", by_alias=True),
                "excel_data": excel_data.model_dump(mode="json", by_alias=True),
            },
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise PersistenceError("Template store returned no row for the insert.")
        return self._to_record(rows[0])

    def list(self, owner_id: str) -> list[TemplateRecord]:
        rows = self._request(
            "GET",
            params={"select": "*", "user_id": f"eq.{owner_id}", "order": "created_at.desc"},
        )
        return newest_first([self._to_record(row) for row in rows])

    def delete(self, template_id: str, owner_id: str) -> None:
        rows = self._request(
            "DELETE",
            params={"id": f"eq.{template_id}", "user_id": f"eq.{owner_id}"},
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise NotFoundError(f"Template not found: {template_id}")


def build_store(settings) -> TemplateStore:
    """Construct the backend named by ``settings.template_store``."""
    if settings.template_store == "supabase":
        return SupabaseTemplateStore(settings.supabase_url, settings.supabase_anon_key)
    if settings.template_store == "sheets":
        from google_sheets_store import GoogleSheetsTemplateStore

        store = GoogleSheetsTemplateStore.from_service_account(
            settings.google_service_account_file, settings.google_spreadsheet_id
        )
        store.initialize()
        return store
    return LocalTemplateStore(settings.template_store_dir)
