import base64
import binascii
import logging

from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

import os  # noqa: E402
from typing import Optional  # noqa: E402

from fastapi import FastAPI, HTTPException, Response  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from pydantic import BaseModel  # noqa: E402

from sheet_export import (  # noqa: E402
    CharacterSheetService,
    ExportTargetExistsError,
    Portrait,
    SheetExportError,
    TemplateEncryptedError,
    TemplateNotFoundError,
    TemplateUnreadableError,
    build_field_map,
    compute_character_values,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Character Sheet Export")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8501",
        "http://127.0.0.1:8501",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sheet_service = CharacterSheetService()


class SheetRequest(BaseModel):
    character: dict
    template_name: str
    portrait_base64: Optional[str] = None
    portrait_filename: Optional[str] = None


class SheetExportRequest(SheetRequest):
    output_path: str  # file name inside SHEET_EXPORT_DIR
    overwrite: bool = False


class FieldMapRequest(BaseModel):
    character: dict
    template_name: Optional[str] = None


def _portrait(req: SheetRequest) -> Optional[Portrait]:
    if not req.portrait_base64:
        return None
    try:
        data = base64.b64decode(req.portrait_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Portrait is not valid base64: {exc}") from exc
    return Portrait(data=data, filename=req.portrait_filename or "portrait.png")


def _http_error(exc: SheetExportError) -> HTTPException:
    if isinstance(exc, TemplateNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ExportTargetExistsError):
        return HTTPException(status_code=409, detail=f"{exc}. Pass overwrite=true to replace it.")
    if isinstance(exc, TemplateEncryptedError):
        return HTTPException(
            status_code=422,
            detail=f"{exc}. Remove the password protection or pick another template.",
        )
    if isinstance(exc, TemplateUnreadableError):
        return HTTPException(status_code=422, detail=f"{exc}. The template file may be damaged.")
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/hello")
def read_root():
    return {"msg": "Character sheet export is running"}


# --- Templates ----------------------------------------------------------------


@app.get("/sheets/templates")
def sheets_list_templates():
    return {"templates": sheet_service.list_templates()}


@app.get("/sheets/templates/scan")
def sheets_scan_templates():
    return {"templates": sheet_service.scan_templates()}


@app.get("/sheets/templates/{template_name}/fields")
def sheets_template_fields(template_name: str):
    try:
        scan = sheet_service.inspect(template_name)
    except SheetExportError as exc:
        raise _http_error(exc) from exc
    return {"template": template_name, "scan": scan}


# --- Values & field maps ------------------------------------------------------


@app.post("/sheets/values")
def sheets_values(character: dict):
    values = compute_character_values(character)
    return {
        "abilities": {k: v._asdict() for k, v in values.abilities.items()},
        "proficiency_bonus": values.proficiency_bonus,
        "total_level": values.total_level,
        "max_hp": values.max_hp,
        "saves": {k: v._asdict() for k, v in values.saves.items()},
        "skills": {k: v._asdict() for k, v in values.skills.items()},
        "passive_perception": values.passive_perception,
        "armor_class": values.armor_class,
        "initiative": values.initiative,
        "class_level": values.class_level,
        "hit_dice": values.hit_dice,
    }


@app.post("/sheets/field-map")
def sheets_field_map(req: FieldMapRequest):
    field_map = build_field_map(req.character, req.template_name)
    return {
        "schema": field_map.schema.value,
        "text_fields": field_map.text_fields,
        "checkbox_fields": field_map.checkbox_fields,
    }


# --- Export -------------------------------------------------------------------


@app.post("/sheets/preview")
def sheets_preview(req: SheetRequest):
    try:
        result = sheet_service.preview(req.character, req.template_name, portrait=_portrait(req), confined=True)
    except SheetExportError as exc:
        raise _http_error(exc) from exc

    encoded = base64.b64encode(result["bytes"]).decode("ascii")
    return {
        "metadata": result["metadata"],
        "pdf_base64": encoded,
    }


@app.post("/sheets/export")
def sheets_export(req: SheetExportRequest):
    try:
        metadata = sheet_service.export(
            req.character,
            req.template_name,
            req.output_path,
            portrait=_portrait(req),
            overwrite=req.overwrite,
            confined=True,
        )
    except SheetExportError as exc:
        raise _http_error(exc) from exc
    except OSError as exc:
        raise HTTPException(status_code=400, detail=f"Cannot write {req.output_path}: {exc}") from exc
    return {"ok": True, "metadata": metadata}


@app.get("/sheets/{pdf_id}")
def sheets_get_pdf(pdf_id: str):
    """Download a previewed sheet by ID"""
    record = sheet_service.get_preview(pdf_id)
    if not record:
        raise HTTPException(status_code=404, detail="PDF not found or expired")
    filename = record["metadata"].get("filename") or f"{pdf_id}.pdf"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=record["bytes"], media_type="application/pdf", headers=headers)
