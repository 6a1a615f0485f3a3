# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Google reCAPTCHA siteverify response model.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


class RecaptchaResponse(BaseModel):
    """Verification result returned by the siteverify API."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(False, description="Whether the token was valid")
    challenge_ts: Optional[datetime] = Field(None, description="Timestamp of the challenge load")
    hostname: str = Field("", description="Hostname of the site where the challenge was solved")
    error_codes: List[str] = Field(default_factory=list, alias="error-codes", description="Error codes")
