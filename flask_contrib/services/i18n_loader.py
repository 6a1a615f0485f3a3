# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Translation catalogs loaded from YAML or JSON message files.

File names carry the language tag: ``active.en-US.yaml``, ``el-GR.json`` or
``locales/zh-CN/messages.yml``. Messages are plain strings or plural forms
(``zero``, ``one``, ``two``, ``few``, ``many``, ``other``); ``{{.Name}}``
placeholders are filled from the translation parameters.
"""

import glob
import json
import logging
import os
import re
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r'^[a-zA-Z]{2,3}([-_][a-zA-Z0-9]{2,8})*$')
PLACEHOLDER_PATTERN = re.compile(r'\{\{\s*\.(\w+)\s*\}\}')
PLURAL_FORMS = ('zero', 'one', 'two', 'few', 'many', 'other')
GLOB_CHARS = ('*', '?', '[')

Message = Union[str, Dict[str, str]]


class CatalogError(Exception):
    """Raised when a message file can't be loaded."""


def language_tag_from_filename(path: str) -> str:
    """
    Find the language tag in a message file name.

    Raises:
        CatalogError: When neither the file name nor its directory names a tag
    """
    stem = os.path.basename(path).rsplit('.', 1)[0]
    candidate = stem.rsplit('.', 1)[-1]
    if TAG_PATTERN.match(candidate):
        return candidate.replace('_', '-')

    directory = os.path.basename(os.path.dirname(path))
    if TAG_PATTERN.match(directory):
        return directory.replace('_', '-')

    raise CatalogError(f"no language tag found in {path}")


def parse_message_file(path: str) -> Dict[str, Message]:
    """Read a YAML or JSON message file into a flat id → message mapping."""
    ext = os.path.splitext(path)[1].lower()
    try:
        with open(path, encoding='utf-8') as f:
            if ext == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise CatalogError(f"failed to load {path}: {str(e)}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise CatalogError(f"{path} must contain a mapping of message ids")

    messages: Dict[str, Message] = {}
    _flatten(data, '', messages)
    return messages


def _flatten(data: Dict[str, Any], prefix: str, out: Dict[str, Message]):
    for key, value in data.items():
        message_id = f"{prefix}{key}"
        if isinstance(value, dict):
            if any(form in value for form in PLURAL_FORMS):
                out[message_id] = {k: str(v) for k, v in value.items() if k in PLURAL_FORMS}
            else:
                _flatten(value, f"{message_id}.", out)
        else:
            out[message_id] = str(value)


def expand_patterns(patterns: Iterable[str]) -> List[str]:
    files: List[str] = []
    for pattern in patterns:
        if any(c in pattern for c in GLOB_CHARS):
            files.extend(sorted(glob.glob(pattern)))
        else:
            files.append(pattern)
    return files


def plural_form(count: Any) -> str:
    if count == 0:
        return 'zero'
    if count == 1:
        return 'one'
    return 'other'


def render(template: str, params: Dict[str, Any]) -> str:
    return PLACEHOLDER_PATTERN.sub(
        lambda m: str(params[m.group(1)]) if m.group(1) in params else m.group(0),
        template
    )


class MessageBundle:
    """Messages of every loaded language."""

    def __init__(self):
        self.messages: Dict[str, Dict[str, Message]] = {}

    def add_messages(self, tag: str, messages: Dict[str, Message]):
        self.messages.setdefault(tag, {}).update(messages)

    def load_file(self, path: str, tag: Optional[str] = None):
        tag = tag or language_tag_from_filename(path)
        messages = parse_message_file(path)
        self.add_messages(tag, messages)
        logger.debug(f"Loaded {len(messages)} messages for {tag} from {path}")

    def language_tags(self) -> List[str]:
        return list(self.messages)

    def match(self, language: str) -> Optional[str]:
        """
        Resolve a requested language to a loaded tag.

        Exact (case insensitive) matches win, then tags sharing the base
        language (``el`` matches ``el-GR``).
        """
        if not language:
            return None

        wanted = language.strip().replace('_', '-').lower()
        for tag in self.messages:
            if tag.lower() == wanted:
                return tag

        base = wanted.split('-')[0]
        for tag in self.messages:
            if tag.lower().split('-')[0] == base:
                return tag

        return None

    def localize(self, languages: List[str], message_id: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Translate a message, trying each language in order.

        ``params['PluralCount']`` selects the plural form. Unknown messages
        translate to their id.
        """
        params = params or {}
        for language in languages:
            tag = self.match(language)
            if tag is None or message_id not in self.messages[tag]:
                continue

            message = self.messages[tag][message_id]
            if isinstance(message, dict):
                form = plural_form(params.get('PluralCount'))
                message = message.get(form) or message.get('other', '')
            return render(message, params)

        return message_id


def load_bundle(patterns: Iterable[str]) -> MessageBundle:
    """
    Load message files into a bundle.

    Args:
        patterns: File names or glob patterns

    Raises:
        CatalogError: On unreadable files or names without a language tag
    """
    bundle = MessageBundle()
    for path in expand_patterns(patterns):
        bundle.load_file(path)
    return bundle
