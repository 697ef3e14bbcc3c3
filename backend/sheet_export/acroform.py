"""
Walking helpers for the AcroForm field tree of a pypdf document.

Field attributes such as ``/FT`` and ``/Ff`` may live on an ancestor node, and
a terminal field may either be its own widget or carry unnamed widget kids.
These helpers hide both details from the patcher and the portrait embedder.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

from pypdf import PdfWriter
from pypdf.generic import DictionaryObject, NameObject

FF_READ_ONLY = 1
FF_RADIO = 1 << 15
FF_PUSHBUTTON = 1 << 16
FF_COMBO = 1 << 17

_MAX_DEPTH = 32


def resolve(obj: Any) -> Any:
    return obj.get_object() if obj is not None and hasattr(obj, "get_object") else obj


def get_acroform(writer: PdfWriter) -> Optional[DictionaryObject]:
    acroform = resolve(writer._root_object.get("/AcroForm"))
    return acroform if isinstance(acroform, DictionaryObject) else None


def inherited(node: DictionaryObject, key: str) -> Any:
    """Value of ``key`` on the node or its nearest ancestor carrying it."""
    depth = 0
    while isinstance(node, DictionaryObject) and depth < _MAX_DEPTH:
        if key in node:
            return resolve(node.get(key))
        node = resolve(node.get("/Parent"))
        depth += 1
    return None


def pin_inherited(field: DictionaryObject, keys: Tuple[str, ...]) -> List[str]:
    """Copy inherited ``keys`` onto the field itself; returns the keys copied."""
    pinned = []
    for key in keys:
        if key in field:
            continue
        value = inherited(resolve(field.get("/Parent")), key)
        if value is not None:
            field[NameObject(key)] = value
            pinned.append(key)
    return pinned


def field_flags(field: DictionaryObject) -> int:
    flags = inherited(field, "/Ff")
    try:
        return int(flags) if flags is not None else 0
    except (TypeError, ValueError):
        return 0


def field_kind(field: DictionaryObject) -> str:
    """Classify a terminal field: text, dropdown, list, checkbox, radio, button, signature."""
    field_type = inherited(field, "/FT")
    flags = field_flags(field)
    if field_type == "/Tx":
        return "text"
    if field_type == "/Ch":
        return "dropdown" if flags & FF_COMBO else "list"
    if field_type == "/Btn":
        if flags & FF_PUSHBUTTON:
            return "button"
        if flags & FF_RADIO:
            return "radio"
        return "checkbox"
    if field_type == "/Sig":
        return "signature"
    return "unknown"


def _kids(node: DictionaryObject) -> List[DictionaryObject]:
    kids = resolve(node.get("/Kids"))
    if kids is None:
        return []
    return [k for k in (resolve(kid) for kid in kids) if isinstance(k, DictionaryObject)]


def iter_nodes(writer: PdfWriter) -> Iterator[DictionaryObject]:
    """Every node of the field tree, widgets included, parents before kids."""
    acroform = get_acroform(writer)
    if acroform is None:
        return
    roots = [resolve(ref) for ref in resolve(acroform.get("/Fields")) or []]
    stack = [n for n in reversed(roots) if isinstance(n, DictionaryObject)]
    seen = set()
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        yield node
        stack.extend(reversed(_kids(node)))


def _walk(node: DictionaryObject, parent_name: str, depth: int, seen: set) -> Iterator[Tuple[str, DictionaryObject]]:
    if depth > _MAX_DEPTH or id(node) in seen:
        return
    seen.add(id(node))

    partial = resolve(node.get("/T"))
    if partial is not None:
        name = f"{parent_name}.{partial}" if parent_name else str(partial)
    else:
        name = parent_name

    kids = _kids(node)
    named = [k for k in kids if "/T" in k]
    if named:
        for kid in named:
            yield from _walk(kid, name, depth + 1, seen)
        if len(named) == len(kids):
            return
    if name:
        yield name, node


def field_index(writer: PdfWriter) -> Dict[str, DictionaryObject]:
    """Terminal fields keyed by fully-qualified name, in document order."""
    acroform = get_acroform(writer)
    if acroform is None:
        return {}
    index: Dict[str, DictionaryObject] = {}
    seen: set = set()
    for ref in resolve(acroform.get("/Fields")) or []:
        node = resolve(ref)
        if not isinstance(node, DictionaryObject):
            continue
        for name, field in _walk(node, "", 0, seen):
            index.setdefault(name, field)
    return index


def field_widgets(field: DictionaryObject) -> List[DictionaryObject]:
    """Widget annotations of a terminal field (the field itself when merged)."""
    widgets = [kid for kid in _kids(field) if "/T" not in kid]
    return widgets or [field]


def on_state(widget: DictionaryObject) -> str:
    """First non-``/Off`` appearance state of a checkbox widget."""
    appearance = resolve(widget.get("/AP"))
    normal = resolve(appearance.get("/N")) if isinstance(appearance, DictionaryObject) else None
    if isinstance(normal, DictionaryObject):
        for state in normal.keys():
            if state != "/Off":
                return str(state)
    return "/Yes"
