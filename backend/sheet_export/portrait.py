"""
Portrait embedding for image-button fields.

The image is decoded with PyMuPDF, written into the document as an image
XObject and drawn, aspect-fit and centred, inside a new Form XObject that
becomes the normal appearance of the first matching pushbutton.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, NamedTuple, Optional, Tuple, Union

import fitz  # PyMuPDF
from pypdf import PdfWriter
from pypdf.generic import (
    ArrayObject,
    DecodedStreamObject,
    DictionaryObject,
    FloatObject,
    IndirectObject,
    NameObject,
    NumberObject,
)

from .acroform import field_kind, field_widgets, resolve
from .errors import PortraitEmbedFailure

logger = logging.getLogger(__name__)

PORTRAIT_FIELD_CANDIDATES = ("CHARACTER IMAGE", "CharacterImage", "Portrait")

PNG_SUFFIXES = (".png",)
JPEG_SUFFIXES = (".jpg", ".jpeg")

_COLORSPACES = {1: "/DeviceGray", 3: "/DeviceRGB", 4: "/DeviceCMYK"}


class Portrait(NamedTuple):
    data: bytes
    filename: str

    @property
    def suffix(self) -> str:
        return Path(self.filename).suffix.lower()


def load_portrait(path: Union[str, Path]) -> Portrait:
    """Read portrait bytes from disk; only PNG and JPEG files are accepted."""
    path = Path(path)
    if path.suffix.lower() not in PNG_SUFFIXES + JPEG_SUFFIXES:
        raise PortraitEmbedFailure(f"Unsupported portrait format '{path.suffix or path.name}'")
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise PortraitEmbedFailure(f"Cannot read portrait {path}: {exc}") from exc
    if not data:
        raise PortraitEmbedFailure(f"Portrait {path} is empty")
    return Portrait(data=data, filename=path.name)


def _decode(data: bytes) -> "fitz.Pixmap":
    try:
        return fitz.Pixmap(data)
    except Exception as exc:
        raise PortraitEmbedFailure(f"Cannot decode portrait image: {exc}") from exc


def _image_stream(
    colorspace: str,
    width: int,
    height: int,
    data: bytes,
    filter_name: Optional[str] = None,
) -> DecodedStreamObject:
    stream = DecodedStreamObject()
    stream.set_data(data)
    stream.update(
        {
            NameObject("/Type"): NameObject("/XObject"),
            NameObject("/Subtype"): NameObject("/Image"),
            NameObject("/Width"): NumberObject(width),
            NameObject("/Height"): NumberObject(height),
            NameObject("/ColorSpace"): NameObject(colorspace),
            NameObject("/BitsPerComponent"): NumberObject(8),
        }
    )
    if filter_name:
        stream[NameObject("/Filter")] = NameObject(filter_name)
    return stream


def _png_image(writer: PdfWriter, data: bytes) -> Tuple[IndirectObject, int, int]:
    pix = _decode(data)
    alpha = None
    if pix.alpha:
        alpha = bytes(pix.samples[pix.n - 1 :: pix.n])
        pix = fitz.Pixmap(pix, 0)
    if pix.colorspace is None or pix.colorspace.n not in (1, 3):
        pix = fitz.Pixmap(fitz.csRGB, pix)

    image = _image_stream(_COLORSPACES[pix.colorspace.n], pix.width, pix.height, bytes(pix.samples))
    if alpha is not None:
        smask = _image_stream("/DeviceGray", pix.width, pix.height, alpha).flate_encode()
        image[NameObject("/SMask")] = writer._add_object(smask)
    return writer._add_object(image.flate_encode()), pix.width, pix.height


def _jpeg_image(writer: PdfWriter, data: bytes) -> Tuple[IndirectObject, int, int]:
    pix = _decode(data)
    components = pix.colorspace.n if pix.colorspace is not None else pix.n - pix.alpha
    if components not in _COLORSPACES:
        raise PortraitEmbedFailure(f"Unsupported JPEG colour components: {components}")
    image = _image_stream(_COLORSPACES[components], pix.width, pix.height, data, "/DCTDecode")
    return writer._add_object(image), pix.width, pix.height


def _appearance(image: IndirectObject, image_size: Tuple[int, int], box: Tuple[float, float]) -> DecodedStreamObject:
    box_width, box_height = box
    image_width, image_height = image_size
    scale = min(box_width / image_width, box_height / image_height)
    draw_width, draw_height = image_width * scale, image_height * scale
    offset_x = (box_width - draw_width) / 2
    offset_y = (box_height - draw_height) / 2

    form = DecodedStreamObject()
    form.set_data(
        f"q {draw_width:.4f} 0 0 {draw_height:.4f} {offset_x:.4f} {offset_y:.4f} cm /Portrait Do Q".encode("latin-1")
    )
    form.update(
        {
            NameObject("/Type"): NameObject("/XObject"),
            NameObject("/Subtype"): NameObject("/Form"),
            NameObject("/BBox"): ArrayObject(
                [FloatObject(0), FloatObject(0), FloatObject(box_width), FloatObject(box_height)]
            ),
            NameObject("/Resources"): DictionaryObject(
                {NameObject("/XObject"): DictionaryObject({NameObject("/Portrait"): image})}
            ),
        }
    )
    return form


def _widget_box(widget: DictionaryObject) -> Tuple[float, float]:
    rect = resolve(widget.get("/Rect"))
    if rect is None or len(rect) != 4:
        return 0.0, 0.0
    x1, y1, x2, y2 = (float(resolve(v)) for v in rect)
    return abs(x2 - x1), abs(y2 - y1)


def find_portrait_field(fields: Dict[str, DictionaryObject]) -> Tuple[str, DictionaryObject]:
    for name in PORTRAIT_FIELD_CANDIDATES:
        field = fields.get(name)
        if field is not None and field_kind(field) == "button":
            return name, field
    raise PortraitEmbedFailure("Template has no portrait button field")


def embed_portrait(writer: PdfWriter, fields: Dict[str, DictionaryObject], portrait: Portrait) -> str:
    """
    Embed ``portrait`` and bind it to the first candidate image button.

    Args:
        writer: Document being patched.
        fields: Terminal fields keyed by qualified name.
        portrait: Image bytes plus the file name that decides the decoder.

    Returns:
        Name of the field that received the image.

    Raises:
        PortraitEmbedFailure: unsupported format, undecodable image or no
            usable target field. The document is left untouched in that case.
    """
    if portrait.suffix in PNG_SUFFIXES:
        decoder = _png_image
    elif portrait.suffix in JPEG_SUFFIXES:
        decoder = _jpeg_image
    else:
        raise PortraitEmbedFailure(f"Unsupported portrait format '{portrait.suffix or portrait.filename}'")

    name, field = find_portrait_field(fields)
    widgets = [(w, _widget_box(w)) for w in field_widgets(field)]
    widgets = [(w, box) for w, box in widgets if box[0] > 0 and box[1] > 0]
    if not widgets:
        raise PortraitEmbedFailure(f"Portrait field '{name}' has no visible widget")

    image, width, height = decoder(writer, portrait.data)
    if not width or not height:
        raise PortraitEmbedFailure("Portrait image has no pixels")

    for widget, box in widgets:
        appearance = writer._add_object(_appearance(image, (width, height), box))
        widget[NameObject("/AP")] = DictionaryObject({NameObject("/N"): appearance})

    logger.info("Embedded portrait %s into field '%s' (%dx%d)", portrait.filename, name, width, height)
    return name
