# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas of wrapped API responses.
"""

from .recaptcha import RecaptchaResponse

__all__ = [
    "RecaptchaResponse"
]
