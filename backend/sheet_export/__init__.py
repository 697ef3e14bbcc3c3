"""
Character sheet export package.

This module bundles reusable utilities for:
  - deriving game values from a character record
  - mapping those values onto the field names of each template version
  - patching fillable PDF templates (values, portrait, chrome, scripts)
  - inspecting the form fields a template exposes
"""

from .character_values import CharacterValues, compute_character_values
from .errors import (
    ExportTargetError,
    ExportTargetExistsError,
    FieldNotFoundWarning,
    PortraitEmbedFailure,
    SheetExportError,
    TemplateEncryptedError,
    TemplateNotFoundError,
    TemplateUnreadableError,
)
from .field_mapping import FieldMap, TemplateSchema, build_field_map, select_schema
from .pdf_utils import fill_character_sheet
from .portrait import Portrait, load_portrait
from .service import CharacterSheetService
from .template_scanner import inspect_template

__all__ = [
    "CharacterSheetService",
    "CharacterValues",
    "ExportTargetError",
    "ExportTargetExistsError",
    "FieldMap",
    "FieldNotFoundWarning",
    "Portrait",
    "PortraitEmbedFailure",
    "SheetExportError",
    "TemplateEncryptedError",
    "TemplateNotFoundError",
    "TemplateSchema",
    "TemplateUnreadableError",
    "build_field_map",
    "compute_character_values",
    "fill_character_sheet",
    "inspect_template",
    "load_portrait",
    "select_schema",
]
