# app/utils/localized.py
"""
Localized text values.

Titles and descriptions are stored either as a plain string (legacy rows) or
as a bilingual ``{"en": ..., "tg": ...}`` mapping. Schemas accept the
``LocalizedText`` union; every read site renders through ``display_text``.
"""

import json
from typing import Any, Union

from pydantic import BaseModel, Field


class BilingualText(BaseModel):
    en: str = Field(..., min_length=1)
    tg: str = Field(..., min_length=1)


LocalizedText = Union[str, BilingualText]


def to_storage(value: Any) -> Any:
    """Convert a schema value into its JSON column form."""
    if isinstance(value, BilingualText):
        return value.model_dump()
    return value


def display_text(value: Any, lang: str = "en", default: str = "") -> str:
    if value is None or value == "":
        return default

    if isinstance(value, BilingualText):
        value = value.model_dump()

    if isinstance(value, str):
        stripped = value.strip()
        # legacy rows sometimes hold the bilingual object as a JSON string
        if stripped.startswith("{"):
            try:
                parsed = json.loads(stripped)
            except ValueError:
                return value
            if isinstance(parsed, dict):
                return display_text(parsed, lang, default)
        return value

    if isinstance(value, dict):
        other = "tg" if lang == "en" else "en"
        return value.get(lang) or value.get(other) or default

    return str(value)
