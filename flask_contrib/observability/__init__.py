# SPDX-License-Identifier: Apache-2.0

"""
Observability package - structlog configuration, tracing and request logging.
"""
