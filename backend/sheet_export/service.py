"""
High-level service that exposes character sheet export to the FastAPI layer.

Responsibilities
----------------
* resolve template names to files inside the templates directory
* route both entry points (in-memory preview, save-to-disk) through one core
* keep a small TTL cache of generated previews for download
* confine paths coming from untrusted callers to the export and portrait directories
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import re
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from cachetools import TTLCache

from .errors import (
    ExportTargetError,
    ExportTargetExistsError,
    PortraitEmbedFailure,
    TemplateNotFoundError,
)
from .field_mapping import build_field_map, select_schema
from .pdf_utils import fill_character_sheet
from .portrait import JPEG_SUFFIXES, PNG_SUFFIXES, Portrait, load_portrait
from .template_scanner import TemplateScanner

logger = logging.getLogger(__name__)

PortraitSource = Union[Portrait, str, Path, None]

DEFAULT_PREVIEW_TTL = 600
DEFAULT_PREVIEW_CACHE_SIZE = 32

_PACKAGE_DIR = Path(__file__).resolve().parent


def _basename(name: Any) -> str:
    """Final path component of ``name`` with either separator; '' for dot names."""
    filename = Path(str(name or "").replace("\\", "/")).name
    return "" if filename in (".", "..") else filename


class CharacterSheetService:
    def __init__(
        self,
        templates_dir: Optional[Path] = None,
        preview_ttl: Optional[float] = None,
        preview_cache_size: Optional[int] = None,
        exports_dir: Optional[Path] = None,
        portraits_dir: Optional[Path] = None,
    ):
        self.templates_dir = Path(templates_dir or os.getenv("SHEET_TEMPLATES_DIR") or _PACKAGE_DIR / "pdf_templates")
        self.templates_dir.mkdir(parents=True, exist_ok=True)
        self.template_scanner = TemplateScanner(self.templates_dir)

        # Only used for confined (HTTP) calls
        self.exports_dir = Path(exports_dir or os.getenv("SHEET_EXPORT_DIR") or _PACKAGE_DIR / "exports")
        self.portraits_dir = Path(portraits_dir or os.getenv("SHEET_PORTRAITS_DIR") or _PACKAGE_DIR / "portraits")

        ttl = preview_ttl or float(os.getenv("SHEET_PREVIEW_TTL", DEFAULT_PREVIEW_TTL))
        size = preview_cache_size or int(os.getenv("SHEET_PREVIEW_CACHE_SIZE", DEFAULT_PREVIEW_CACHE_SIZE))
        self._pdf_cache: TTLCache = TTLCache(maxsize=size, ttl=ttl)
        self._cache_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------
    def list_templates(self) -> List[Dict]:
        results = []
        for pdf_file in sorted(self.templates_dir.glob("*.pdf")):
            results.append(
                {
                    "name": pdf_file.stem,
                    "filename": pdf_file.name,
                    "schema": select_schema(pdf_file.name).value,
                    "size": pdf_file.stat().st_size,
                }
            )
        return results

    def resolve_template_path(self, template_name: str) -> Path:
        """Map a logical template name onto a file inside the templates directory."""
        filename = _basename(template_name)
        if not filename:
            raise TemplateNotFoundError(f"Invalid template name '{template_name}'")
        if not filename.lower().endswith(".pdf"):
            filename = f"{filename}.pdf"

        root = self.templates_dir.resolve()
        candidate = (root / filename).resolve()
        if candidate.parent == root and candidate.is_file():
            return candidate

        # Case-insensitive match on the stem
        stem = Path(filename).stem.lower()
        for pdf_file in sorted(self.templates_dir.glob("*.pdf")):
            if pdf_file.stem.lower() == stem:
                return pdf_file

        raise TemplateNotFoundError(f"PDF template '{template_name}' not found in {self.templates_dir}")

    def inspect(self, template_name: str) -> Dict:
        return self.template_scanner.scan_template(self.resolve_template_path(template_name))

    def scan_templates(self) -> Dict[str, Dict]:
        return self.template_scanner.scan_all_templates()

    # ------------------------------------------------------------------
    # Confined paths
    # ------------------------------------------------------------------
    def resolve_export_path(self, output_name: str) -> Path:
        """Map a requested file name onto a ``.pdf`` file directly inside the exports directory."""
        filename = _basename(output_name)
        if not filename:
            raise ExportTargetError(f"Invalid export file name '{output_name}'")
        if not filename.lower().endswith(".pdf"):
            filename = f"{filename}.pdf"

        self.exports_dir.mkdir(parents=True, exist_ok=True)
        root = self.exports_dir.resolve()
        candidate = (root / filename).resolve()
        if candidate.parent != root:
            raise ExportTargetError(f"Export file '{output_name}' is outside {self.exports_dir}")
        return candidate

    def resolve_portrait_path(self, portrait_name: str) -> Path:
        """Map a record's portrait name onto an image directly inside the portraits directory."""
        filename = _basename(portrait_name)
        if Path(filename).suffix.lower() not in PNG_SUFFIXES + JPEG_SUFFIXES:
            raise PortraitEmbedFailure(f"Unsupported portrait '{portrait_name}'")

        root = self.portraits_dir.resolve()
        candidate = (root / filename).resolve()
        if candidate.parent != root or not candidate.is_file():
            raise PortraitEmbedFailure(f"Portrait '{portrait_name}' not found in {self.portraits_dir}")
        return candidate

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def _portrait(self, character: Dict[str, Any], portrait: PortraitSource, confined: bool) -> Optional[Portrait]:
        source = portrait if portrait is not None else character.get("portrait")
        if not source:
            return None
        if isinstance(source, Portrait):
            return source
        try:
            if confined:
                source = self.resolve_portrait_path(source)
            return load_portrait(source)
        except PortraitEmbedFailure as exc:
            logger.warning("Portrait skipped: %s", exc)
            return None

    def render_sheet(
        self,
        character: Dict[str, Any],
        template_name: str,
        portrait: PortraitSource = None,
        confined: bool = False,
    ) -> bytes:
        """
        Shared core of both entry points: resolve, map, patch.

        With ``confined`` set, a portrait path taken from the record is only
        looked up by file name inside the portraits directory.
        """
        template_path = self.resolve_template_path(template_name)
        character = character if isinstance(character, dict) else {}
        field_map = build_field_map(character, template_path.name)
        logger.info(
            "Rendering '%s' with template %s (%s schema)",
            character.get("name") or "unnamed character",
            template_path.name,
            field_map.schema.value,
        )
        return fill_character_sheet(
            template_path.read_bytes(),
            field_map,
            portrait=self._portrait(character, portrait, confined),
        )

    def _metadata(self, character: Dict[str, Any], template_name: str, pdf_bytes: bytes) -> Dict:
        character = character if isinstance(character, dict) else {}
        template_path = self.resolve_template_path(template_name)
        base = f"{character.get('name') or 'character'}_{template_path.stem}"
        return {
            "template_name": template_path.stem,
            "schema": select_schema(template_path.name).value,
            "generated_at": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            "filename": re.sub(r"[^\w\-.]+", "_", base).strip("_") + ".pdf",
            "size": len(pdf_bytes),
        }

    def preview(
        self,
        character: Dict[str, Any],
        template_name: str,
        portrait: PortraitSource = None,
        confined: bool = False,
    ) -> Dict:
        pdf_bytes = self.render_sheet(character, template_name, portrait, confined=confined)
        metadata = self._metadata(character, template_name, pdf_bytes)
        metadata["pdf_id"] = str(uuid.uuid4())

        entry = {"metadata": metadata, "bytes": pdf_bytes}
        with self._cache_lock:
            self._pdf_cache[metadata["pdf_id"]] = entry
        return entry

    def get_preview(self, pdf_id: str) -> Optional[Dict]:
        with self._cache_lock:
            return self._pdf_cache.get(pdf_id)

    @staticmethod
    def _write(target: Path, pdf_bytes: bytes, overwrite: bool) -> None:
        """Write through a sibling temp file so a failed export never leaves a partial file."""
        if target.exists() and not overwrite:
            raise ExportTargetExistsError(f"Refusing to overwrite existing file {target}")
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.stem}-", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(pdf_bytes)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def export(
        self,
        character: Dict[str, Any],
        template_name: str,
        output_path: Union[str, Path],
        portrait: PortraitSource = None,
        overwrite: bool = False,
        confined: bool = False,
    ) -> Dict:
        """
        Render and write to disk; returns metadata with the written path.

        Unconfined calls write to the caller's path as given. Confined calls
        treat ``output_path`` as a file name inside the exports directory.
        Existing files are only replaced when ``overwrite`` is set.
        """
        target = self.resolve_export_path(output_path) if confined else Path(output_path)
        pdf_bytes = self.render_sheet(character, template_name, portrait, confined=confined)
        self._write(target, pdf_bytes, overwrite)
        logger.info("Wrote character sheet to %s (%d bytes)", target, len(pdf_bytes))

        metadata = self._metadata(character, template_name, pdf_bytes)
        metadata["file_path"] = str(target)
        return metadata
