"""
Exception types shared by the sheet export engine.

Document-level failures (``TemplateUnreadableError``, ``TemplateEncryptedError``)
are the only fatal class; everything else is absorbed by the patcher and logged.
"""

from __future__ import annotations


class SheetExportError(RuntimeError):
    """Base class for export errors surfaced to callers."""


class TemplateNotFoundError(SheetExportError):
    """No template file matches the requested name."""


class TemplateUnreadableError(SheetExportError):
    """Template bytes are not a parseable PDF document."""


class TemplateEncryptedError(SheetExportError):
    """Template requires a password to open."""

    def __init__(self, message: str = "This PDF template is encrypted and cannot be used"):
        super().__init__(message)


class ExportTargetError(SheetExportError):
    """Export destination is invalid or outside the allowed directory."""


class ExportTargetExistsError(ExportTargetError):
    """Export destination already exists and overwriting was not requested."""


class PortraitEmbedFailure(SheetExportError):
    """Portrait could not be read, decoded or bound to an image field."""


class FieldNotFoundWarning(UserWarning):
    """A mapped field is absent from the template (or has another kind)."""

    def __init__(self, field_name: str, expected: str = "field"):
        super().__init__(f"{expected} '{field_name}' not found in template")
        self.field_name = field_name
        self.expected = expected
