"""
Input schemas for records that arrive from outside the engine.

Historical grants are read from operator-supplied JSON, so every field is
parsed strictly: integers must be real integers (no floats, numeric strings
or booleans) and out-of-range values are rejected rather than coerced.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, conint, constr, model_validator

from reward_escrow.core.constants import UINT256_MAX


class ImportRecord(BaseModel):
    """
    One historical grant to import.

    Exactly one of ``duration`` or ``end_time`` must be given. A duration
    starts the schedule at import time; an end time keeps the original
    schedule end, vesting linearly from import time until then.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    account: constr(strip_whitespace=True, min_length=1)
    escrow_amount: conint(gt=0, le=UINT256_MAX)
    duration: Optional[conint(gt=0)] = None
    end_time: Optional[conint(ge=0)] = None

    @model_validator(mode="after")
    def _one_schedule_bound(self) -> "ImportRecord":
        if (self.duration is None) == (self.end_time is None):
            raise ValueError("exactly one of duration or end_time is required")
        return self
