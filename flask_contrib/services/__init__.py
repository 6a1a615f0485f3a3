# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Wrapped library setup shared by the middleware.
"""

from .database import DatabaseOptions, Repository, build_engine, check_schema, create_schema, is_no_rows
from .i18n_loader import CatalogError, MessageBundle, load_bundle
from .jwt_keys import generate_dev_key_pair, jwks_key, key_from_env, sign_token, static_key

__all__ = [
    "DatabaseOptions",
    "Repository",
    "build_engine",
    "check_schema",
    "create_schema",
    "is_no_rows",
    "CatalogError",
    "MessageBundle",
    "load_bundle",
    "generate_dev_key_pair",
    "jwks_key",
    "key_from_env",
    "sign_token",
    "static_key"
]
