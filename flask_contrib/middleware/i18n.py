# SPDX-License-Identifier: Apache-2.0

"""
Language negotiation middleware.

Picks the language of each request from the URL parameter, the language
cookie or the Accept-Language header, remembers it in a cookie and exposes a
translate function for views and templates.
"""

from flask import Flask, current_app, request, g
from typing import Any, Iterable, Optional
import logging

from ..services.i18n_loader import MessageBundle, load_bundle

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'flask_contrib.i18n'


class I18n:
    """i18n middleware for Flask applications."""

    def __init__(
        self,
        app: Optional[Flask] = None,
        locales: Iterable[str] = (),
        default: str = "en-US",
        url_parameter: str = "lang",
        cookie_name: str = "lang",
        bundle: Optional[MessageBundle] = None
    ):
        """
        Load the translation catalogs.

        Args:
            app: Flask application
            locales: Message file names or glob patterns
            default: Language used when negotiation finds nothing
            url_parameter: Query parameter naming the language
            cookie_name: Cookie remembering the language
            bundle: Pre-loaded catalogs, ``locales`` are added to it
        """
        self.bundle = bundle or MessageBundle()
        for tag, messages in load_bundle(locales).messages.items():
            self.bundle.add_messages(tag, messages)

        self.default = default
        self.url_parameter = url_parameter
        self.cookie_name = cookie_name

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.extensions[EXTENSION_KEY] = self
        app.before_request(self.negotiate)
        app.after_request(self.remember_language)
        app.jinja_env.globals['translate'] = translate

    def from_accept_language(self) -> Optional[str]:
        """
        Best Accept-Language entry that has a catalog.

        Entries are tried in order of quality; ``el`` resolves to a loaded
        ``el-GR``.
        """
        for language, quality in request.accept_languages:
            if language == '*' or quality <= 0:
                continue
            tag = self.bundle.match(language)
            if tag is not None:
                return tag
        return None

    def negotiate(self):
        """before_request hook storing the language on ``g.language``."""
        if g.get('language'):
            return None

        by_cookie = False
        language = request.args.get(self.url_parameter, '')
        if not language:
            language = request.cookies.get(self.cookie_name, '')
            if language:
                by_cookie = True
            else:
                language = self.from_accept_language() or ''

        g.language = language or self.default
        g.language_from_cookie = by_cookie
        return None

    def remember_language(self, response):
        language = g.get('language')
        if language and not g.get('language_from_cookie', False):
            response.set_cookie(self.cookie_name, language)
        return response

    def translate(self, message_id: str, language: Optional[str] = None, **params: Any) -> str:
        languages = [language or g.get('language') or self.default, self.default]
        return self.bundle.localize(languages, message_id, params)


def get_language() -> str:
    """Return the language negotiated for the current request."""
    return g.get('language', '')


def translate(message_id: str, **params: Any) -> str:
    """
    Translate a message into the current request's language.

    Falls back to the default language, then to the message id.
    """
    i18n: I18n = current_app.extensions[EXTENSION_KEY]
    return i18n.translate(message_id, **params)
