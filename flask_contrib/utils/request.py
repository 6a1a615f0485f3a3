# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request utilities for extracting and processing request data.
"""

from flask import request
from typing import Dict, List, Optional
from urllib.parse import urlsplit
import logging

logger = logging.getLogger(__name__)


class RequestParser:
    """Utility for parsing and extracting request data."""

    @staticmethod
    def get_client_ip() -> str:
        """
        Get the remote address of the client.

        Honors the first entry of ``X-Forwarded-For`` when present.

        Returns:
            Client IP address or empty string
        """
        forwarded_for = request.headers.get('X-Forwarded-For', '')
        if forwarded_for:
            return forwarded_for.split(',')[0].strip()

        return request.remote_addr or ''

    @staticmethod
    def is_secure(proxy_headers: Optional[Dict[str, str]] = None) -> bool:
        """
        Check whether the request arrived over HTTPS.

        Args:
            proxy_headers: Header/value pairs that mark a request as HTTPS
                when terminated by a proxy (e.g. ``{"X-Forwarded-Proto": "https"}``)

        Returns:
            True if the request is secure
        """
        if request.scheme.lower() == 'https':
            return True

        for header, value in (proxy_headers or {}).items():
            if request.headers.get(header) == value:
                return True

        return False

    @staticmethod
    def get_list_param(name: str, separator: str = ',') -> List[str]:
        """
        Extract a list query parameter.

        Accepts both repeated parameters (``?c=a&c=b``) and separated values
        (``?c=a,b``).
        """
        values = []
        for raw in request.args.getlist(name):
            values.extend(v.strip() for v in raw.split(separator) if v.strip())
        return values

    @staticmethod
    def same_origin(first: str, second: str) -> bool:
        """Compare scheme and host of two URLs."""
        a, b = urlsplit(first), urlsplit(second)
        return a.scheme == b.scheme and a.netloc == b.netloc

    @staticmethod
    def dump_request() -> str:
        """Render the request line and headers (body excluded) for diagnostics."""
        lines = [f"{request.method} {request.full_path.rstrip('?')} {request.environ.get('SERVER_PROTOCOL', 'HTTP/1.1')}"]
        for key, value in request.headers.items():
            if key.lower() in ('authorization', 'cookie'):
                value = '*'
            lines.append(f"{key}: {value}")
        return "\r\n".join(lines)
