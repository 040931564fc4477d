# domain/history.py
from dataclasses import dataclass, field
from datetime import datetime

from .calculator import CalcStatus
from .project import utc_now


@dataclass
class QuickCalcHistoryItem:
    id: str
    reference_flow: float
    measured_flow: float
    deviation: float
    status: CalcStatus
    color: str
    timestamp: datetime = field(default_factory=utc_now)
