import gettext
import os
from functools import lru_cache
from typing import Any, Dict

from src.utils.logging import get_logger

logger = get_logger(__name__)

SUPPORTED_LANGUAGES = {
    "en": "English",
    "de": "Deutsch",
    "fr": "Français",
    "es": "Español",
    "hu": "Magyar",
}

# Message ids are the English source text, gettext style.
WELCOME_MESSAGE = (
    "Welcome to {site_name}!\n"
    "Complete your profile, say hello to people you like and have fun meeting new friends."
)
MISSED_CALL_MESSAGE = "Missed call"

DEFAULT_LOCALEDIR = os.path.join(os.path.dirname(__file__), "..", "..", "locales")


class I18n:
    """Localization collaborator: renders system-authored text for a locale."""

    def __init__(self, localedir: str = DEFAULT_LOCALEDIR, domain: str = "base") -> None:
        """Initialize the provider and load the available catalogs."""
        self.localedir = localedir
        self.domain = domain
        self.translations: Dict[str, gettext.NullTranslations] = {}
        self._load_translations()

    def _load_translations(self) -> None:
        """
        Load one compiled catalog per supported language.

        Missing catalogs fall back to ``NullTranslations``, which returns the
        English message id unchanged.
        """
        for lang in SUPPORTED_LANGUAGES:
            try:
                self.translations[lang] = gettext.translation(self.domain, self.localedir, languages=[lang])
            except FileNotFoundError:
                logger.debug("Translation catalog not found", lang=lang, localedir=self.localedir)
                self.translations[lang] = gettext.NullTranslations()

    @staticmethod
    def normalize_locale(locale: str | None) -> str:
        """Reduce ``de-AT`` / ``de_AT`` style locales to a supported language code."""
        if not locale:
            return "en"
        lang = locale.replace("-", "_").split("_", 1)[0].lower()
        return lang if lang in SUPPORTED_LANGUAGES else "en"

    # B019: lru_cache on method is fine, one I18n lives for the whole process
    @lru_cache(maxsize=1024)  # noqa: B019
    def _translate(self, key: str, lang: str) -> str:
        return str(self.translations[lang].gettext(key))

    def get_text(self, key: str, lang: str | None = "en", **params: Any) -> str:
        """
        Get translated text for a message id.

        Args:
            key (str): The message id (English source text).
            lang (str | None): Target locale; unsupported locales fall back to English.
            **params: Values substituted into ``{placeholders}``.

        Returns:
            str: The rendered text.
        """
        text = self._translate(key, self.normalize_locale(lang))
        return text.format(**params) if params else text

    def get_supported_languages(self) -> dict:
        """Return a mapping of language codes to language names."""
        return SUPPORTED_LANGUAGES.copy()
