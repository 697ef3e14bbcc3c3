# tests/conftest.py
import io
import os
import tempfile

# Keep the module-level service in main.py away from the package directory.
os.environ.setdefault("SHEET_TEMPLATES_DIR", tempfile.mkdtemp(prefix="sheet-templates-"))
os.environ.setdefault("SHEET_EXPORT_DIR", tempfile.mkdtemp(prefix="sheet-exports-"))
os.environ.setdefault("SHEET_PORTRAITS_DIR", tempfile.mkdtemp(prefix="sheet-portraits-"))

import fitz  # noqa: E402
import pytest  # noqa: E402
from pypdf import PdfReader, PdfWriter  # noqa: E402
from pypdf.generic import (  # noqa: E402
    ArrayObject,
    DictionaryObject,
    FloatObject,
    NameObject,
    NumberObject,
    TextStringObject,
)

TEXT = "text"
CHECKBOX = "checkbox"
COMBO = "combo"
BUTTON = "button"

# Fields of a trimmed-down 2014 sheet: enough to exercise every patch step.
LEGACY_FIELDS = [
    ("PC Name", TEXT, {}),
    ("Class and Levels", TEXT, {}),
    ("Race", TEXT, {}),
    ("Str", TEXT, {}),
    ("Str Mod", TEXT, {}),
    ("Con", TEXT, {}),
    ("Con Mod", TEXT, {}),
    ("Str ST Mod", TEXT, {}),
    ("Ath", TEXT, {}),
    ("Inti", TEXT, {}),
    ("Ste", TEXT, {}),
    ("Passive Perception", TEXT, {}),
    ("HD1 Level", TEXT, {}),
    ("HD1 Die", TEXT, {}),
    ("AC", TEXT, {"read_only": True, "script_calc": "event.value = 10;"}),
    ("Proficiency Bonus", TEXT, {"read_only": True, "script_calc": "event.value = '+2';"}),
    ("Initiative bonus", COMBO, {"options": ["+0", "+1", "+2"]}),
    ("Speed", COMBO, {"options": ["30 ft"]}),
    ("Attack.1.Mod", COMBO, {"options": ["--", "+1"], "value": "--"}),
    ("Str ST Prof", CHECKBOX, {}),
    ("Ath Prof", CHECKBOX, {}),
    ("Ste Prof", CHECKBOX, {}),
    ("Exhaustion Tracker", CHECKBOX, {}),
    ("Add Feat", BUTTON, {}),
    ("Portrait", BUTTON, {"height": 120}),
    ("Image.1", BUTTON, {}),
]

CURRENT_FIELDS = [
    ("Text_1", TEXT, {}),
    ("Text_2", TEXT, {}),
    ("Text_22", TEXT, {}),
    ("Text_25", TEXT, {}),
    ("Text_34", TEXT, {}),
    ("Text_14", TEXT, {}),
    ("Text_7", TEXT, {}),
    ("Checkbox_21", CHECKBOX, {}),
    ("Checkbox_28", CHECKBOX, {}),
    ("CharacterImage", BUTTON, {"height": 120}),
]


def _add_widget(page, name, kind, rect, opts):
    widget = fitz.Widget()
    widget.field_name = name
    widget.rect = rect
    if kind == TEXT:
        widget.field_type = fitz.PDF_WIDGET_TYPE_TEXT
        widget.field_value = ""
        widget.text_fontsize = 9
    elif kind == CHECKBOX:
        widget.field_type = fitz.PDF_WIDGET_TYPE_CHECKBOX
        widget.field_value = False
    elif kind == COMBO:
        widget.field_type = fitz.PDF_WIDGET_TYPE_COMBOBOX
        widget.choice_values = opts["options"]
        widget.field_value = opts.get("value", opts["options"][0])
        widget.text_fontsize = 9
    elif kind == BUTTON:
        widget.field_type = fitz.PDF_WIDGET_TYPE_BUTTON
        widget.button_caption = name
        widget.field_flags = fitz.PDF_BTN_FIELD_IS_PUSHBUTTON
    else:
        raise ValueError(kind)
    if opts.get("read_only"):
        widget.field_flags |= fitz.PDF_FIELD_IS_READ_ONLY
    if opts.get("script_calc"):
        widget.script_calc = opts["script_calc"]
    page.add_widget(widget)


def make_template(fields, per_page=14, encrypt=False) -> bytes:
    """Build a fillable PDF with one widget per (name, kind, opts) entry."""
    doc = fitz.open()
    page = None
    y = 0
    for index, (name, kind, opts) in enumerate(fields):
        if index % per_page == 0:
            page = doc.new_page()
            y = 36
        height = opts.get("height", 18)
        page.insert_text((36, y + 12), name, fontsize=8)
        _add_widget(page, name, kind, fitz.Rect(180, y, 180 + 160, y + height), opts)
        y += height + 8
    if encrypt:
        data = doc.tobytes(encryption=fitz.PDF_ENCRYPT_RC4_128, owner_pw="owner", user_pw="user")
    else:
        data = doc.tobytes()
    doc.close()
    return data


def _rect(y):
    return ArrayObject([FloatObject(v) for v in (180, y, 340, y + 18)])


def make_field_tree(group="Grp", field_type="/Tx", flags=0, options=None) -> bytes:
    """
    Build a PDF whose only form field is a parent carrying ``/FT`` with two kids.

    Kid ``a`` is a named terminal field merged with its widget; kid ``b`` is a
    named terminal field with one unnamed widget kid. Neither carries ``/FT``.
    """
    writer = PdfWriter()
    page = writer.add_blank_page(612, 792)
    page_ref = page.indirect_reference

    parent = DictionaryObject(
        {
            NameObject("/T"): TextStringObject(group),
            NameObject("/FT"): NameObject(field_type),
            NameObject("/Ff"): NumberObject(flags),
            NameObject("/DA"): TextStringObject("/Helv 9 Tf 0 g"),
        }
    )
    if options is not None:
        parent[NameObject("/Opt")] = ArrayObject(options)
    parent_ref = writer._add_object(parent)

    def widget(y, extra):
        annot = DictionaryObject(
            {
                NameObject("/Type"): NameObject("/Annot"),
                NameObject("/Subtype"): NameObject("/Widget"),
                NameObject("/Rect"): _rect(y),
                NameObject("/P"): page_ref,
            }
        )
        annot.update(extra)
        return writer._add_object(annot)

    kid_a = widget(700, {NameObject("/T"): TextStringObject("a"), NameObject("/Parent"): parent_ref})
    kid_b = writer._add_object(
        DictionaryObject({NameObject("/T"): TextStringObject("b"), NameObject("/Parent"): parent_ref})
    )
    widget_b = widget(660, {NameObject("/Parent"): kid_b})
    kid_b.get_object()[NameObject("/Kids")] = ArrayObject([widget_b])
    parent[NameObject("/Kids")] = ArrayObject([kid_a, kid_b])

    page[NameObject("/Annots")] = ArrayObject([kid_a, widget_b])
    helv = DictionaryObject(
        {
            NameObject("/Type"): NameObject("/Font"),
            NameObject("/Subtype"): NameObject("/Type1"),
            NameObject("/BaseFont"): NameObject("/Helvetica"),
            NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
        }
    )
    writer._root_object[NameObject("/AcroForm")] = writer._add_object(
        DictionaryObject(
            {
                NameObject("/Fields"): ArrayObject([parent_ref]),
                NameObject("/DA"): TextStringObject("/Helv 0 Tf 0 g"),
                NameObject("/DR"): DictionaryObject(
                    {NameObject("/Font"): DictionaryObject({NameObject("/Helv"): writer._add_object(helv)})}
                ),
            }
        )
    )
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def make_image(fmt="png", alpha=False, size=(8, 4)) -> bytes:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, *size), alpha)
    pix.clear_with(180)
    return pix.tobytes(fmt)


def widgets_by_name(pdf_bytes: bytes):
    """Widget annotation dictionaries of a PDF keyed by field name."""
    reader = PdfReader(io.BytesIO(pdf_bytes))
    widgets = {}
    for page in reader.pages:
        for annot in page.get("/Annots") or []:
            annot = annot.get_object()
            if annot.get("/Subtype") != "/Widget":
                continue
            name = annot.get("/T")
            if name is None and "/Parent" in annot:
                name = annot["/Parent"].get("/T")
            widgets[str(name)] = annot
    return widgets


@pytest.fixture
def legacy_template() -> bytes:
    return make_template(LEGACY_FIELDS)


@pytest.fixture
def current_template() -> bytes:
    return make_template(CURRENT_FIELDS)


@pytest.fixture
def encrypted_template() -> bytes:
    return make_template(LEGACY_FIELDS[:3], encrypt=True)


@pytest.fixture
def templates_dir(tmp_path, legacy_template, current_template, encrypted_template):
    root = tmp_path / "templates"
    root.mkdir()
    (root / "MPMB Sheet.pdf").write_bytes(legacy_template)
    (root / "WotC Sheet 2024.pdf").write_bytes(current_template)
    (root / "Locked.pdf").write_bytes(encrypted_template)
    (root / "Broken.pdf").write_bytes(b"definitely not a pdf")
    return root


@pytest.fixture
def tordek():
    return {
        "name": "Tordek",
        "playerName": "Sam",
        "race": {"name": "Dwarf", "subrace": "Hill"},
        "background": {"name": "Soldier"},
        "abilityScores": {
            "strength": 16,
            "dexterity": 12,
            "constitution": 14,
            "intelligence": 10,
            "wisdom": 13,
            "charisma": 8,
        },
        "abilityBonuses": {
            "constitution": [{"value": 2, "source": "race"}],
            "wisdom": [{"value": 1, "source": "subrace"}],
        },
        "progression": {
            "classes": [{"name": "Fighter", "levels": 5, "hitDice": 10, "subclass": "Champion"}],
        },
        "proficiencies": {
            "armor": ["Light Armor", "Medium Armor", "Heavy Armor", "Shields"],
            "weapons": ["Simple Weapons", "Martial Weapons", "Battleaxe"],
            "tools": ["Smith's Tools"],
            "skills": ["Athletics", "Intimidation"],
            "languages": ["Common", "Dwarvish"],
            "savingThrows": ["Strength", "Constitution"],
        },
        "speed": {"walk": 25},
        "hitPoints": {"current": 44, "max": 44, "temp": 0},
        "inventory": {
            "items": [
                {"name": "Greataxe", "quantity": 1},
                {"name": "Handaxe", "quantity": 2},
                {"name": "Explorer's Pack", "quantity": 1},
            ]
        },
        "features": {"darkvision": 60, "resistances": ["Poison"], "traits": {"Dwarven Resilience": {}}},
        "gender": "Male",
        "backstory": "Veteran of the goblin wars.",
    }


def has_portrait(pdf_bytes: bytes, field="Portrait") -> bool:
    normal = widgets_by_name(pdf_bytes)[field]["/AP"]["/N"]
    resources = normal["/Resources"] if "/Resources" in normal else {}
    xobjects = resources["/XObject"] if "/XObject" in resources else {}
    return "/Portrait" in xobjects
