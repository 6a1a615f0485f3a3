# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

Each module adapts one third-party library to Flask's request hooks and
view decorators: policy enforcement, CORS, CSRF, JWT validation, rate
limiting, metrics, crash reporting, recovery, security headers, reCAPTCHA,
database sessions and language negotiation. No module depends on another.
"""
