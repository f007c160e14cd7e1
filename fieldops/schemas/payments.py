import uuid
import datetime as dt
from typing import List, Optional

from pydantic import BaseModel


class PaymentLine(BaseModel):
    session_id: uuid.UUID
    date: dt.date
    building: Optional[str] = None
    apartment: Optional[str] = None
    work_type: Optional[str] = None
    hours: float
    hourly_rate: float
    pay: float
    was_corrected: bool = False
    correction_reason: Optional[str] = None

    model_config = {"frozen": True}


class PaymentRecord(BaseModel):
    worker_id: uuid.UUID
    worker_name: str
    worker_email: str
    total_hours: float
    total_pay: float
    sessions_count: int
    avg_hourly_rate: float
    sessions: List[PaymentLine]

    model_config = {"frozen": True}


class IncompleteSession(BaseModel):
    """A session left out of the totals, with the reason it was left out."""
    session_id: uuid.UUID
    worker_id: uuid.UUID
    date: dt.date
    status: str
    reason: str

    model_config = {"frozen": True}


class PaymentSummary(BaseModel):
    total_workers: int
    total_sessions: int
    total_hours: float
    total_pay: float
    avg_hourly_rate: float
    corrected_sessions: int
    incomplete_sessions: int

    model_config = {"frozen": True}


class PaymentReport(BaseModel):
    start_date: dt.date
    end_date: dt.date
    include_unapproved: bool
    records: List[PaymentRecord]
    incomplete: List[IncompleteSession]
    summary: PaymentSummary

    model_config = {"frozen": True}
