"""
Low-level PDF utilities for patching AcroForm character sheet templates.

The template is cloned into a pypdf ``PdfWriter`` and patched in place; it is
never flattened. Steps run in a fixed order: values are written first, then
the template's editing chrome and scripts are neutralised, appearance streams
are regenerated and finally the ``/Off`` checkbox state is dropped. That last
step must follow appearance regeneration, which would otherwise put it back.
"""

from __future__ import annotations

import io
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from pypdf import PasswordType, PdfReader, PdfWriter
from pypdf.errors import DependencyError
from pypdf.generic import (
    ArrayObject,
    BooleanObject,
    DictionaryObject,
    FloatObject,
    NameObject,
    NumberObject,
    TextStringObject,
)

from .acroform import (
    FF_READ_ONLY,
    field_flags,
    field_index,
    field_kind,
    field_widgets,
    get_acroform,
    inherited,
    iter_nodes,
    on_state,
    pin_inherited,
    resolve,
)
from .errors import (
    FieldNotFoundWarning,
    PortraitEmbedFailure,
    TemplateEncryptedError,
    TemplateUnreadableError,
)
from .field_mapping import FieldMap
from .portrait import PORTRAIT_FIELD_CANDIDATES, Portrait, embed_portrait

logger = logging.getLogger(__name__)

# Pushbuttons that are artwork rather than editing UI.
KEEP_BUTTON_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE) for p in (r"^Portrait$", r"^Symbol$", r"^HeaderIcon$", r"^Image\.", r"^Weight ")
) + tuple(re.compile(rf"^{re.escape(name)}$", re.IGNORECASE) for name in PORTRAIT_FIELD_CANDIDATES)

# Attributes the appearance generator reads from the field dictionary.
APPEARANCE_KEYS = ("/FT", "/Ff", "/DA")

Fields = Dict[str, DictionaryObject]


def load_template(template_bytes: bytes) -> PdfWriter:
    """
    Parse template bytes into a writable document.

    Raises:
        TemplateUnreadableError: bytes are not a parseable PDF, or use an
            encryption scheme the installed pypdf cannot decode.
        TemplateEncryptedError: the document needs a password to open.
    """
    try:
        reader = PdfReader(io.BytesIO(template_bytes), strict=False)
        encrypted = reader.is_encrypted
    except Exception as exc:
        raise TemplateUnreadableError(f"Template is not a readable PDF document: {exc}") from exc

    if encrypted:
        try:
            opened = reader.decrypt("")
        except DependencyError as exc:
            raise TemplateUnreadableError(
                f"Template encryption is not supported by the installed PDF backend: {exc}"
            ) from exc
        if opened == PasswordType.NOT_DECRYPTED:
            raise TemplateEncryptedError()
        logger.debug("Template opened with an empty user password")

    try:
        return PdfWriter(clone_from=reader)
    except Exception as exc:
        raise TemplateUnreadableError(f"Template structure could not be loaded: {exc}") from exc


# ---------------------------------------------------------------------------
# Steps 2-3: values
# ---------------------------------------------------------------------------


def _lookup(fields: Fields, name: str, *kinds: str) -> DictionaryObject:
    field = fields.get(name)
    if field is None or field_kind(field) not in kinds:
        raise FieldNotFoundWarning(name, " or ".join(kinds))
    return field


def _option_values(option) -> Optional[Tuple[str, str]]:
    """(export, display) of an /Opt entry, or None when the entry is malformed."""
    option = resolve(option)
    if isinstance(option, list):
        parts = [resolve(p) for p in option]
        if len(parts) not in (1, 2) or not all(isinstance(p, str) for p in parts):
            return None
        return str(parts[0]), str(parts[-1])
    if isinstance(option, str):
        return str(option), str(option)
    return None


def set_text_field(fields: Fields, name: str, value: str) -> str:
    """Write a text value, falling back to a combo box; returns the stored value."""
    field = _lookup(fields, name, "text", "dropdown")
    if field_kind(field) == "text":
        field[NameObject("/V")] = TextStringObject(value)
        return value
    return select_dropdown(field, value)


def select_dropdown(field: DictionaryObject, value: str) -> str:
    """Select ``value`` by export or display value, appending it to ``/Opt`` when absent."""
    options = inherited(field, "/Opt")
    if not isinstance(options, ArrayObject):
        options = ArrayObject()

    selected = None
    for option in options:
        pair = _option_values(option)
        if pair is None:
            continue
        if value in pair:
            selected = pair[0]
            break
    if selected is None:
        # Options inherited from a parent are copied so siblings keep theirs.
        options = ArrayObject(options)
        options.append(TextStringObject(value))
        field[NameObject("/Opt")] = options
        selected = value

    field[NameObject("/V")] = TextStringObject(selected)
    if "/I" in field:
        del field["/I"]
    return selected


def set_checkbox(fields: Fields, name: str, checked: bool) -> None:
    field = _lookup(fields, name, "checkbox")
    widgets = field_widgets(field)
    states = [on_state(w) if checked else "/Off" for w in widgets]
    for widget, state in zip(widgets, states):
        widget[NameObject("/AS")] = NameObject(state)
    field[NameObject("/V")] = NameObject(states[0])


def _apply_values(fields: Fields, field_map: FieldMap) -> Dict[str, str]:
    written: Dict[str, str] = {}
    skipped = 0
    for name, value in field_map.text_fields.items():
        try:
            written[name] = set_text_field(fields, name, value)
        except FieldNotFoundWarning as warning:
            skipped += 1
            logger.debug("Skipping text value: %s", warning)

    for name, checked in field_map.checkbox_fields.items():
        try:
            set_checkbox(fields, name, checked)
        except FieldNotFoundWarning as warning:
            skipped += 1
            logger.debug("Skipping checkbox value: %s", warning)

    total = len(field_map.text_fields) + len(field_map.checkbox_fields)
    logger.info("Applied %d of %d mapped values (%d not in template)", total - skipped, total, skipped)
    return written


# ---------------------------------------------------------------------------
# Steps 5-9: chrome, scripts, flags
# ---------------------------------------------------------------------------


def hide_field(field: DictionaryObject) -> None:
    """Zero every widget rectangle and drop its appearance; no flatten involved."""
    for widget in field_widgets(field):
        widget[NameObject("/Rect")] = ArrayObject([FloatObject(0)] * 4)
        if "/AP" in widget:
            del widget["/AP"]


def is_kept_button(name: str) -> bool:
    return any(pattern.search(name) for pattern in KEEP_BUTTON_PATTERNS)


def hide_pushbuttons(fields: Fields) -> List[str]:
    hidden = [name for name, field in fields.items() if field_kind(field) == "button" and not is_kept_button(name)]
    for name in hidden:
        hide_field(fields[name])
    return hidden


def hide_checkboxes(fields: Fields, names: Iterable[str]) -> List[str]:
    hidden = []
    for name in names:
        try:
            hide_field(_lookup(fields, name, "checkbox"))
            hidden.append(name)
        except FieldNotFoundWarning as warning:
            logger.debug("Tracker checkbox not hidden: %s", warning)
    return hidden


def clear_dropdowns(fields: Fields, names: Iterable[str]) -> List[str]:
    cleared = []
    for name in names:
        try:
            field = _lookup(fields, name, "dropdown", "list")
        except FieldNotFoundWarning as warning:
            logger.debug("Dropdown not cleared: %s", warning)
            continue
        field[NameObject("/V")] = TextStringObject("")
        for key in ("/I", "/DV"):
            if key in field:
                del field[key]
        cleared.append(name)
    return cleared


def strip_scripts(writer: PdfWriter) -> int:
    """Remove calculation and auto-action scripts from every field node and widget."""
    stripped = 0
    for node in iter_nodes(writer):
        if "/AA" in node:
            del node["/AA"]
            stripped += 1
        action = resolve(node.get("/A"))
        if isinstance(action, DictionaryObject) and action.get("/S") == "/JavaScript":
            del node["/A"]
            stripped += 1

    acroform = get_acroform(writer)
    if acroform is not None and "/CO" in acroform:
        del acroform["/CO"]
    return stripped


def make_editable(fields: Fields, names: Iterable[str]) -> None:
    for name in names:
        field = fields.get(name)
        if field is None:
            logger.debug("Editable field '%s' not in template", name)
            continue
        flags = field_flags(field)
        if flags & FF_READ_ONLY:
            field[NameObject("/Ff")] = NumberObject(flags & ~FF_READ_ONLY)


# ---------------------------------------------------------------------------
# Steps 10-12: appearances and serialization
# ---------------------------------------------------------------------------


def regenerate_appearances(writer: PdfWriter, fields: Fields, values: Dict[str, str]) -> None:
    """
    Rebuild text/dropdown appearance streams for the fields written by this export.

    pypdf only looks for the field type on a widget or its direct parent, so
    attributes inherited from further up the tree are pinned on each field first.
    """
    if not values:
        return
    for name in values:
        if name in fields:
            pinned = pin_inherited(fields[name], APPEARANCE_KEYS)
            if pinned:
                logger.debug("Pinned inherited %s on '%s'", ", ".join(pinned), name)
    for page_number, page in enumerate(writer.pages):
        if "/Annots" not in page:
            continue
        try:
            writer.update_page_form_field_values(page, values, auto_regenerate=False)
        except Exception as exc:
            logger.debug("Batch appearance update failed on page %d (%s); retrying per field", page_number + 1, exc)
            for name, value in values.items():
                try:
                    writer.update_page_form_field_values(page, {name: value}, auto_regenerate=False)
                except Exception as field_exc:
                    logger.warning("Appearance not regenerated for '%s': %s", name, field_exc)


def drop_off_appearances(fields: Fields) -> int:
    dropped = 0
    for field in fields.values():
        if field_kind(field) != "checkbox":
            continue
        for widget in field_widgets(field):
            appearance = resolve(widget.get("/AP"))
            normal = resolve(appearance.get("/N")) if isinstance(appearance, DictionaryObject) else None
            if isinstance(normal, DictionaryObject) and "/Off" in normal:
                del normal["/Off"]
                dropped += 1
    return dropped


def serialize(writer: PdfWriter) -> bytes:
    acroform = get_acroform(writer)
    if acroform is not None:
        acroform[NameObject("/NeedAppearances")] = BooleanObject(False)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def fill_character_sheet(
    template_bytes: bytes,
    field_map: FieldMap,
    portrait: Optional[Portrait] = None,
) -> bytes:
    """
    Fill a character sheet template with the values of ``field_map``.

    Args:
        template_bytes: Raw bytes of a fillable PDF template.
        field_map: Field-name keyed values and patch directives for the template's schema.
        portrait: Optional PNG/JPEG image for the portrait button.

    Returns:
        Bytes of the patched PDF.

    Raises:
        TemplateUnreadableError: template bytes are not a PDF.
        TemplateEncryptedError: template needs a password.
    """
    writer = load_template(template_bytes)
    fields = field_index(writer)
    logger.debug("Template exposes %d fields (%s schema)", len(fields), field_map.schema.value)

    written = _apply_values(fields, field_map)

    if portrait is not None:
        try:
            embed_portrait(writer, fields, portrait)
        except PortraitEmbedFailure as exc:
            logger.warning("Portrait skipped: %s", exc)

    hidden = hide_pushbuttons(fields)
    hidden += hide_checkboxes(fields, field_map.hidden_checkboxes)
    written.update((name, "") for name in clear_dropdowns(fields, field_map.cleared_dropdowns))
    stripped = strip_scripts(writer)
    make_editable(fields, field_map.editable_fields)

    regenerate_appearances(writer, fields, written)
    drop_off_appearances(fields)
    result = serialize(writer)

    logger.info(
        "Filled character sheet: %d fields written, %d widgets hidden, %d scripts stripped, %d bytes",
        len(written),
        len(hidden),
        stripped,
        len(result),
    )
    return result

