import pytest

from app.utils.localized import BilingualText, display_text, to_storage
from app.utils.slug import slugify


@pytest.mark.parametrize(
    "value, lang, expected",
    [
        ("Plain title", "en", "Plain title"),
        ({"en": "Crypto", "tg": "Крипто"}, "en", "Crypto"),
        ({"en": "Crypto", "tg": "Крипто"}, "tg", "Крипто"),
        ({"en": "", "tg": "Крипто"}, "en", "Крипто"),
        ('{"en": "Stored as JSON", "tg": "Сатр"}', "en", "Stored as JSON"),
        ("{not json", "en", "{not json"),
        (None, "en", ""),
        ("", "en", ""),
    ],
)
def test_display_text(value, lang, expected):
    assert display_text(value, lang) == expected


def test_display_text_default():
    assert display_text(None, default="Untitled") == "Untitled"
    assert display_text({}, default="Untitled") == "Untitled"


def test_to_storage_dumps_bilingual_text():
    assert to_storage(BilingualText(en="Hi", tg="Салом")) == {"en": "Hi", "tg": "Салом"}
    assert to_storage("Hi") == "Hi"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Intro to Trading", "intro-to-trading"),
        ("  ETFs & Options!  ", "etfs-options"),
        ("Асосҳо", "item"),
    ],
)
def test_slugify(text, expected):
    assert slugify(text) == expected
