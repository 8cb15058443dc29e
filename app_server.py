import logging
from dataclasses import asdict
from typing import Any

# load_dotenv() MUST be called before importing auth so that SUPABASE_URL and
# SUPABASE_JWT_SECRET are in os.environ when auth.py reads them at import time.
from dotenv import load_dotenv
load_dotenv()

from auth import CurrentUser, get_current_user
from certificate_render import (
    EXPORT_FORMATS,
    available_font_families,
    export_batch,
    export_certificate,
    register_fonts_from_directory,
)
from errors import AuthError, ExportError, NotFoundError, ParseError, PersistenceError
from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fill_engine import FillState, apply_row, seed_fill_state
from pydantic import Field
from render_projector import export_source, preview
from row_search import search_rows
from settings import Settings, load_settings
from sheet_import import ACCEPTED_EXTENSIONS, auto_select, filename_accepted, parse_workbook
from template_model import CamelModel, CanvasData, ExcelData, Sheet, TemplateRecord
from template_store import TemplateStore, build_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ── REQUEST MODELS ────────────────────────────────────────────────────────────


class CreateTemplateRequest(CamelModel):
    name: str
    canvas_data: CanvasData = Field(default_factory=CanvasData)
    excel_data: ExcelData = Field(default_factory=ExcelData)


class SearchRequest(CamelModel):
    term: str = ""


class FillRequest(CamelModel):
    fill_state: dict[str, str] | None = None


class ApplyRowRequest(FillRequest):
    row: list[Any] | None = None
    row_index: int | None = None


class ParsedWorkbook(CamelModel):
    sheets: list[Sheet]
    selected_sheet: str | None = None


# ── DEPENDENCIES ──────────────────────────────────────────────────────────────


def get_store(request: Request) -> TemplateStore:
    return request.app.state.store


def load_owned_template(
    template_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: TemplateStore = Depends(get_store),
) -> TemplateRecord:
    return store.get(template_id, user.id)


def _fill_state_for(record: TemplateRecord, fill_state: FillState | None) -> FillState:
    # a missing fill-state means a fresh session for this template
    if fill_state is None:
        return seed_fill_state(record.canvas_data)
    return dict(fill_state)


def _check_format(fmt: str) -> str:
    fmt = fmt.lower()
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported format '{fmt}'. Use one of: {', '.join(sorted(EXPORT_FORMATS))}.",
        )
    return fmt


# ── ROUTES ────────────────────────────────────────────────────────────────────


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/me")
def me(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    return user


@router.get("/fonts")
def list_fonts(user: CurrentUser = Depends(get_current_user)) -> dict[str, list[str]]:
    return {"fonts": available_font_families()}


@router.post("/sheets/parse", response_model=ParsedWorkbook)
def parse_sheets(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
) -> ParsedWorkbook:
    """Parse an uploaded workbook; a single sheet is selected automatically."""
    if not filename_accepted(file.filename):
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Upload one of: {', '.join(ACCEPTED_EXTENSIONS)}.",
        )
    sheets = parse_workbook(file.file.read())
    only = auto_select(sheets)
    return ParsedWorkbook(sheets=sheets, selected_sheet=only.name if only else None)


@router.get("/templates", response_model=list[TemplateRecord])
def list_templates(
    user: CurrentUser = Depends(get_current_user),
    store: TemplateStore = Depends(get_store),
) -> list[TemplateRecord]:
    return store.list(user.id)


@router.post("/templates", response_model=TemplateRecord, status_code=201)
def create_template(
    payload: CreateTemplateRequest,
    user: CurrentUser = Depends(get_current_user),
    store: TemplateStore = Depends(get_store),
) -> TemplateRecord:
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="Please enter a template name.")
    return store.create(user.id, payload.name, payload.canvas_data, payload.excel_data)


@router.get("/templates/stats")
def template_stats(
    user: CurrentUser = Depends(get_current_user),
    store: TemplateStore = Depends(get_store),
) -> dict[str, int]:
    return {"templatesCreated": store.count(user.id)}


@router.get("/templates/{template_id}", response_model=TemplateRecord)
def get_template(record: TemplateRecord = Depends(load_owned_template)) -> TemplateRecord:
    return record


@router.delete("/templates/{template_id}")
def delete_template(
    template_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: TemplateStore = Depends(get_store),
) -> dict[str, str]:
    store.delete(template_id, user.id)
    return {"message": "Template deleted.", "id": template_id}


@router.post("/templates/{template_id}/search")
def search_template_rows(
    payload: SearchRequest,
    record: TemplateRecord = Depends(load_owned_template),
) -> dict[str, Any]:
    result = search_rows(record.excel_data.data, payload.term)
    return {
        "columns": record.excel_data.columns,
        "rows": result.rows,
        "visible": result.visible,
    }


@router.post("/templates/{template_id}/apply-row")
def apply_template_row(
    payload: ApplyRowRequest,
    record: TemplateRecord = Depends(load_owned_template),
) -> dict[str, Any]:
    row = payload.row
    if row is None:
        rows = record.excel_data.data
        if payload.row_index is None or not 0 <= payload.row_index < len(rows):
            raise HTTPException(status_code=400, detail="Provide a row or a valid rowIndex.")
        row = rows[payload.row_index]
    state = apply_row(
        record.canvas_data,
        row,
        record.excel_data.columns,
        _fill_state_for(record, payload.fill_state),
    )
    return {"fillState": state}


@router.post("/templates/{template_id}/preview")
def preview_template(
    payload: FillRequest,
    record: TemplateRecord = Depends(load_owned_template),
) -> dict[str, Any]:
    state = _fill_state_for(record, payload.fill_state)
    return {
        "fillState": state,
        "preview": asdict(preview(record.canvas_data, state)),
        "exportSource": asdict(export_source(record.canvas_data, state)),
    }


@router.post("/templates/{template_id}/export")
def export_template(
    payload: FillRequest,
    format: str = Query("pdf"),
    record: TemplateRecord = Depends(load_owned_template),
) -> Response:
    fmt = _check_format(format)
    data, filename = export_certificate(
        record.canvas_data, _fill_state_for(record, payload.fill_state), fmt
    )
    return Response(
        content=data,
        media_type=EXPORT_FORMATS[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/templates/{template_id}/export-batch")
def export_template_batch(
    format: str = Query("pdf"),
    record: TemplateRecord = Depends(load_owned_template),
) -> Response:
    fmt = _check_format(format)
    data = export_batch(
        record.canvas_data, record.excel_data.columns, record.excel_data.data, fmt
    )
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="certificates.zip"'},
    )


# ── ERROR HANDLERS ────────────────────────────────────────────────────────────


def _error_response(status_code: int, exc: Exception, **headers: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)}, headers=headers or None)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "message": "Request validation failed.",
            "detail": exc.errors(),
        },
    )


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return _error_response(401, exc, **{"WWW-Authenticate": "Bearer"})


async def parse_error_handler(request: Request, exc: ParseError) -> JSONResponse:
    return _error_response(400, exc)


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(404, exc)


async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Template store failure on %s: %s", request.url.path, exc)
    return _error_response(502, exc)


async def export_error_handler(request: Request, exc: ExportError) -> JSONResponse:
    return _error_response(500, exc)


# ── APP ───────────────────────────────────────────────────────────────────────


def create_app(settings: Settings | None = None, store: TemplateStore | None = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    app = FastAPI(title="Certificate Template Studio API")
    app.state.settings = settings
    app.state.store = store if store is not None else build_store(settings)

    # Allow the Vite dev server to reach the API during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(ParseError, parse_error_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(PersistenceError, persistence_error_handler)
    app.add_exception_handler(ExportError, export_error_handler)
    app.include_router(router)

    register_fonts_from_directory(settings.fonts_dir)
    logger.info("Template store backend: %s", settings.template_store)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
