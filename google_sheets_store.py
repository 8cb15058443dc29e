"""Templates kept as rows of a Google Sheets spreadsheet.

Layout of the ``Templates`` tab (row 1 is the header)::

    ID | User ID | Name | Canvas Data (JSON) | Excel Data (JSON) | Created At
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from errors import NotFoundError, PersistenceError
from template_model import TemplateRecord
from template_store import TemplateStore, newest_first, utc_now

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
SHEET_TITLE = "Templates"
HEADER = ["ID", "User ID", "Name", "Canvas Data", "Excel Data", "Created At"]
DATA_RANGE = f"{SHEET_TITLE}!A:F"


class GoogleSheetsTemplateStore(TemplateStore):
    def __init__(self, service: Any, spreadsheet_id: str) -> None:
        self.service = service
        self.spreadsheet_id = spreadsheet_id

    @classmethod
    def from_service_account(cls, credentials_file: str, spreadsheet_id: str) -> GoogleSheetsTemplateStore:
        credentials = service_account.Credentials.from_service_account_file(
            credentials_file, scopes=SCOPES
        )
        return cls(build("sheets", "v4", credentials=credentials), spreadsheet_id)

    def _sheets(self):
        return self.service.spreadsheets()

    def _tab_id(self) -> int | None:
        try:
            metadata = self._sheets().get(spreadsheetId=self.spreadsheet_id).execute()
        except HttpError as exc:
            logger.error("Error fetching spreadsheet metadata %s: %s", self.spreadsheet_id, exc)
            raise PersistenceError(f"Failed to read spreadsheet metadata: {exc}") from exc
        for sheet in metadata.get("sheets", []):
            props = sheet.get("properties", {})
            if props.get("title") == SHEET_TITLE:
                return props.get("sheetId")
        return None

    def initialize(self) -> None:
        """Create the Templates tab and its header row when missing."""
        if self._tab_id() is not None:
            return
        try:
            self._sheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={"requests": [{"addSheet": {"properties": {"title": SHEET_TITLE}}}]},
            ).execute()
            self._sheets().values().update(
                spreadsheetId=self.spreadsheet_id,
                range=f"{SHEET_TITLE}!A1:F1",
                valueInputOption="RAW",
                body={"values": [HEADER]},
            ).execute()
        except HttpError as exc:
            logger.error("Spreadsheet initialization error: %s", exc)
            raise PersistenceError(f"Failed to initialize spreadsheet: {exc}") from exc
        logger.info("Created %s tab in spreadsheet %s", SHEET_TITLE, self.spreadsheet_id)

    def _rows(self) -> list[list[str]]:
        try:
            result = self._sheets().values().get(
                spreadsheetId=self.spreadsheet_id, range=DATA_RANGE
            ).execute()
        except HttpError as exc:
            logger.error("Error reading templates: %s", exc)
            raise PersistenceError(f"Failed to fetch templates: {exc}") from exc
        # first row is the header
        return result.get("values", [])[1:]

    @staticmethod
    def _to_record(row: list[str]) -> TemplateRecord:
        padded = list(row) + [""] * (len(HEADER) - len(row))
        template_id, owner_id, name, canvas_json, excel_json, created_at = padded[:6]
        try:
            return TemplateRecord(
                id=template_id,
                owner_id=owner_id,
                name=name,
                canvas_data=json.loads(canvas_json or "{}"),
                excel_data=json.loads(excel_json or "{}"),
                created_at=created_at,
                # the tab has no separate update column
                updated_at=created_at,
            )
        except ValueError as exc:
            raise PersistenceError(f"Unreadable template row {template_id!r}: {exc}") from exc

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
        values = [
            record.id,
            record.owner_id,
            record.name,
            canvas_data.model_dump_json(by_alias=True),
            excel_data.model_dump_json(by_alias=True),
            now.isoformat(),
        ]
        try:
            self._sheets().values().append(
                spreadsheetId=self.spreadsheet_id,
                range=DATA_RANGE,
                valueInputOption="RAW",
                body={"values": [values]},
            ).execute()
        except HttpError as exc:
            logger.error("Create template error: %s", exc)
            raise PersistenceError(f"Failed to create template: {exc}") from exc
        return record

    def list(self, owner_id: str) -> list[TemplateRecord]:
        records = []
        for row in self._rows():
            if len(row) > 1 and row[1] == owner_id:
                records.append(self._to_record(row))
        return newest_first(records)

    def delete(self, template_id: str, owner_id: str) -> None:
        position = -1
        for i, row in enumerate(self._rows(), start=1):
            if len(row) > 1 and row[0] == template_id and row[1] == owner_id:
                position = i
                break
        if position < 0:
            raise NotFoundError(f"Template not found: {template_id}")

        tab_id = self._tab_id()
        if tab_id is None:
            raise PersistenceError(f"Spreadsheet has no {SHEET_TITLE} tab.")
        try:
            self._sheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={
                    "requests": [
                        {
                            "deleteDimension": {
                                "range": {
                                    "sheetId": tab_id,
                                    "dimension": "ROWS",
                                    "startIndex": position,
                                    "endIndex": position + 1,
                                }
                            }
                        }
                    ]
                },
            ).execute()
        except HttpError as exc:
            logger.error("Delete template error: %s", exc)
            raise PersistenceError(f"Failed to delete template: {exc}") from exc
