from unittest.mock import MagicMock, patch

import pytest

from src.utils.i18n import MISSED_CALL_MESSAGE, SUPPORTED_LANGUAGES, WELCOME_MESSAGE, I18n


@pytest.fixture
def i18n_instance():
    # Skip catalog loading and provide fake catalogs
    with patch.object(I18n, "_load_translations"):
        instance = I18n()
    instance.translations = {lang: MagicMock() for lang in SUPPORTED_LANGUAGES}
    instance.translations["en"].gettext.side_effect = lambda x: x
    instance.translations["de"].gettext.side_effect = lambda x: f"DE_{x}"
    return instance


def test_supported_languages(i18n_instance):
    assert i18n_instance.get_supported_languages() == SUPPORTED_LANGUAGES


@pytest.mark.parametrize(
    "locale, expected",
    [
        ("de", "de"),
        ("de-AT", "de"),
        ("DE_at", "de"),
        ("pt-BR", "en"),
        (None, "en"),
        ("", "en"),
    ],
)
def test_normalize_locale(locale, expected):
    assert I18n.normalize_locale(locale) == expected


def test_get_text_uses_regional_locale(i18n_instance):
    assert i18n_instance.get_text(MISSED_CALL_MESSAGE, "de-AT") == "DE_Missed call"


def test_get_text_formats_params(i18n_instance):
    text = i18n_instance.get_text(WELCOME_MESSAGE, "en", site_name="OpenCupid")
    assert text.startswith("Welcome to OpenCupid!\n")


def test_missing_catalogs_fall_back_to_message_id():
    with patch("src.utils.i18n.gettext.translation", side_effect=FileNotFoundError):
        instance = I18n()

    assert instance.get_text(MISSED_CALL_MESSAGE, "fr") == "Missed call"
