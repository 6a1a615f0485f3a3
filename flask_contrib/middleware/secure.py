# SPDX-License-Identifier: Apache-2.0

"""
Security headers middleware.

Restricts the allowed host names, redirects plain HTTP to HTTPS and writes
the usual security headers (HSTS, frame options, nosniff, XSS filter, HPKP,
content security policy, referrer policy).
"""

from dataclasses import dataclass, field
from flask import Flask, request, g, redirect
from typing import Any, Callable, Dict, List, Optional
import base64
import logging
import secrets

from ..utils.request import RequestParser

logger = logging.getLogger(__name__)

STS_HEADER = "Strict-Transport-Security"
STS_SUBDOMAIN_STRING = "; includeSubdomains"
STS_PRELOAD_STRING = "; preload"
FRAME_OPTIONS_HEADER = "X-Frame-Options"
FRAME_OPTIONS_VALUE = "DENY"
CONTENT_TYPE_HEADER = "X-Content-Type-Options"
CONTENT_TYPE_VALUE = "nosniff"
XSS_PROTECTION_HEADER = "X-XSS-Protection"
XSS_PROTECTION_VALUE = "1; mode=block"
CSP_HEADER = "Content-Security-Policy"
CSP_REPORT_ONLY_HEADER = "Content-Security-Policy-Report-Only"
HPKP_HEADER = "Public-Key-Pins"
REFERRER_POLICY_HEADER = "Referrer-Policy"

CSP_NONCE_PLACEHOLDER = "$NONCE"
CSP_NONCE_SIZE = 16


def default_bad_host_handler():
    return "Bad Host", 500, {"Content-Type": "text/plain; charset=utf-8"}


def csp_nonce() -> str:
    """Return the CSP nonce of the current request, or an empty string."""
    return g.get('csp_nonce', '')


def _rand_nonce() -> str:
    # Unpadded standard base64
    return base64.b64encode(secrets.token_bytes(CSP_NONCE_SIZE)).decode('ascii').rstrip('=')


@dataclass
class SecureOptions:
    """Configuration of the security middleware; everything is off by default."""

    # Empty list allows every host
    allowed_hosts: List[str] = field(default_factory=list)
    ssl_redirect: bool = False
    # 307 instead of 301
    ssl_temporary_redirect: bool = False
    ssl_host: str = ''
    # e.g. {"X-Forwarded-Proto": "https"}
    ssl_proxy_headers: Dict[str, str] = field(default_factory=dict)
    sts_seconds: int = 0
    sts_include_subdomains: bool = False
    sts_preload: bool = False
    force_sts_header: bool = False
    frame_deny: bool = False
    custom_frame_options_value: str = ''
    content_type_nosniff: bool = False
    browser_xss_filter: bool = False
    content_security_policy: str = ''
    content_security_policy_report_only: bool = False
    referrer_policy: str = ''
    public_key: str = ''
    # Disables host, SSL and STS checks
    is_development: bool = False


class Secure:
    """Security middleware for Flask applications."""

    def __init__(
        self,
        options: Optional[SecureOptions] = None,
        app: Optional[Flask] = None,
        bad_host_handler: Optional[Callable[[], Any]] = None
    ):
        self.options = options or SecureOptions()
        self.bad_host_handler = bad_host_handler or default_bad_host_handler

        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.before_request(self.process_request)
        app.after_request(self.process_response)
        app.jinja_env.globals['csp_nonce'] = csp_nonce

    def set_bad_host_handler(self, handler: Callable[[], Any]):
        self.bad_host_handler = handler

    def is_good_host(self, host: str) -> bool:
        return any(allowed.lower() == host.lower() for allowed in self.options.allowed_hosts)

    def process_request(self):
        """
        Run the host and SSL checks.

        Returns:
            None to continue, or the bad host / redirect response
        """
        opt = self.options

        if opt.allowed_hosts and not opt.is_development:
            if not self.is_good_host(request.host):
                logger.warning("Bad host name", extra={"host": request.host})
                return self.bad_host_handler()

        is_ssl = RequestParser.is_secure(opt.ssl_proxy_headers)
        g.secure_is_ssl = is_ssl

        if opt.ssl_redirect and not is_ssl and not opt.is_development:
            host = opt.ssl_host or request.host
            url = f"https://{host}{request.full_path.rstrip('?')}"
            status = 307 if opt.ssl_temporary_redirect else 301
            return redirect(url, code=status)

        if CSP_NONCE_PLACEHOLDER in opt.content_security_policy:
            g.csp_nonce = _rand_nonce()

        return None

    def header_values(self) -> Dict[str, str]:
        """Compute the security headers for the current request."""
        opt = self.options
        is_ssl = g.get('secure_is_ssl', False)
        headers = {}

        if opt.sts_seconds and (is_ssl or opt.force_sts_header) and not opt.is_development:
            sts_sub = ''
            if opt.sts_include_subdomains:
                sts_sub = STS_SUBDOMAIN_STRING
            if opt.sts_preload:
                sts_sub += STS_PRELOAD_STRING
            headers[STS_HEADER] = f"max-age={opt.sts_seconds}{sts_sub}"

        if opt.custom_frame_options_value:
            headers[FRAME_OPTIONS_HEADER] = opt.custom_frame_options_value
        elif opt.frame_deny:
            headers[FRAME_OPTIONS_HEADER] = FRAME_OPTIONS_VALUE

        if opt.content_type_nosniff:
            headers[CONTENT_TYPE_HEADER] = CONTENT_TYPE_VALUE

        if opt.browser_xss_filter:
            headers[XSS_PROTECTION_HEADER] = XSS_PROTECTION_VALUE

        if opt.public_key and is_ssl and not opt.is_development:
            headers[HPKP_HEADER] = opt.public_key

        if opt.content_security_policy:
            policy = opt.content_security_policy
            nonce = csp_nonce()
            if nonce:
                policy = policy.replace(CSP_NONCE_PLACEHOLDER, f"'nonce-{nonce}'")
            header = CSP_REPORT_ONLY_HEADER if opt.content_security_policy_report_only else CSP_HEADER
            headers[header] = policy

        if opt.referrer_policy:
            headers[REFERRER_POLICY_HEADER] = opt.referrer_policy

        return headers

    def process_response(self, response):
        for name, value in self.header_values().items():
            response.headers[name] = value
        return response
