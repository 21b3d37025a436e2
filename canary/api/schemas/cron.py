from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BatchSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ran: int
    successes: int
    failures: int
    errors: int
