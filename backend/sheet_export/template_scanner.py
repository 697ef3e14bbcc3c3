"""
PDF Template Scanner

Lists the form fields of character sheet templates, in document order, with
the kind vocabulary the patcher uses. Used to author and verify the
per-schema field tables.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Union

import fitz  # PyMuPDF

from .errors import SheetExportError, TemplateEncryptedError, TemplateUnreadableError
from .field_mapping import TemplateSchema, get_schema, select_schema

logger = logging.getLogger(__name__)

WIDGET_KINDS = {
    "Text": "text",
    "ComboBox": "dropdown",
    "ListBox": "list",
    "CheckBox": "checkbox",
    "RadioButton": "radio",
    "Button": "button",
    "Signature": "signature",
}


def _open(template_bytes: bytes) -> "fitz.Document":
    try:
        doc = fitz.open(stream=template_bytes, filetype="pdf")
    except Exception as exc:
        raise TemplateUnreadableError(f"Template is not a readable PDF document: {exc}") from exc
    if doc.needs_pass and not doc.authenticate(""):
        doc.close()
        raise TemplateEncryptedError()
    return doc


def inspect_template(template_bytes: bytes) -> List[Dict]:
    """
    List every form field of a template.

    Returns: [
        {"name": "Str Mod", "kind": "text", "page": 1,
         "rect": [x0, y0, x1, y1], "label": "Strength modifier"},
        ...
    ]
    One entry per field name (the first widget wins), in document order.
    """
    doc = _open(template_bytes)
    fields: List[Dict] = []
    seen = set()
    try:
        for page in doc:
            for widget in page.widgets():
                name = widget.field_name
                if not name or name in seen:
                    continue
                seen.add(name)
                rect = widget.rect
                fields.append(
                    {
                        "name": name,
                        "kind": WIDGET_KINDS.get(widget.field_type_string, "unknown"),
                        "page": page.number + 1,
                        "rect": [round(rect.x0, 2), round(rect.y0, 2), round(rect.x1, 2), round(rect.y1, 2)],
                        "label": (widget.field_label or "").strip(),
                    }
                )
    finally:
        doc.close()
    return fields


def schema_coverage(fields: Iterable[Union[Dict, str]], schema: Union[TemplateSchema, str]) -> Dict:
    """Which of the schema table's field names the template actually has."""
    names = {f["name"] if isinstance(f, dict) else f for f in fields}
    expected = get_schema(schema).field_names
    present = [n for n in expected if n in names]
    missing = [n for n in expected if n not in names]
    return {
        "schema": TemplateSchema(schema).value,
        "present": present,
        "missing": missing,
        "coverage": round(len(present) / len(expected), 3) if expected else 0.0,
    }


class TemplateScanner:
    """Scans a directory of PDF templates for form fields"""

    def __init__(self, templates_dir: Path):
        self.templates_dir = Path(templates_dir)

    def scan_template(self, pdf_file: Path) -> Dict:
        """
        Scan a single PDF template.

        Returns: {
            "template_file": "filename.pdf",
            "schema": "legacy",
            "fields": [...],           # see inspect_template
            "field_count": int,
            "has_fields": bool,
            "coverage": {...}          # see schema_coverage
        }
        """
        pdf_file = Path(pdf_file)
        schema = select_schema(pdf_file.name)
        fields = inspect_template(pdf_file.read_bytes())
        logger.debug("Scanned %s: %d fields", pdf_file.name, len(fields))
        return {
            "template_file": pdf_file.name,
            "schema": schema.value,
            "fields": fields,
            "field_count": len(fields),
            "has_fields": bool(fields),
            "coverage": schema_coverage(fields, schema),
        }

    def scan_all_templates(self) -> Dict[str, Dict]:
        """
        Scan all PDF templates in the templates directory.

        Unreadable or encrypted templates are reported with an ``error`` entry
        instead of aborting the scan.
        """
        results: Dict[str, Dict] = {}

        if not self.templates_dir.exists():
            logger.warning("Templates directory not found: %s", self.templates_dir)
            return results

        for pdf_file in sorted(self.templates_dir.glob("*.pdf")):
            try:
                results[pdf_file.stem] = self.scan_template(pdf_file)
            except (SheetExportError, OSError) as exc:
                logger.warning("Skipped %s: %s", pdf_file.name, exc)
                results[pdf_file.stem] = {
                    "template_file": pdf_file.name,
                    "schema": select_schema(pdf_file.name).value,
                    "fields": [],
                    "field_count": 0,
                    "has_fields": False,
                    "error": str(exc),
                }
        return results

