# domain/calculator.py
from dataclasses import dataclass
from enum import Enum


class CalcStatus(Enum):
    COMPLIANT = "compliant"
    ACCEPTABLE = "acceptable"
    NON_COMPLIANT = "non-compliant"


# Seuils d'écart (en %) entre débit mesuré et débit de référence
COMPLIANT_THRESHOLD = 10.0
ACCEPTABLE_THRESHOLD = 20.0

STATUS_COLORS = {
    CalcStatus.COMPLIANT: "#10B981",
    CalcStatus.ACCEPTABLE: "#F59E0B",
    CalcStatus.NON_COMPLIANT: "#EF4444",
}


@dataclass
class FlowEvaluation:
    """Result of comparing a measured flow to its reference."""
    reference_flow: float
    measured_flow: float
    deviation: float  # %
    status: CalcStatus
    color: str


class FlowCalculator:
    """Deviation and compliance status for shutter flow measurements."""

    @staticmethod
    def deviation(reference_flow: float, measured_flow: float) -> float:
        return (measured_flow - reference_flow) / reference_flow * 100

    @staticmethod
    def status_for(deviation: float) -> CalcStatus:
        magnitude = abs(deviation)
        if magnitude <= COMPLIANT_THRESHOLD:
            return CalcStatus.COMPLIANT
        if magnitude <= ACCEPTABLE_THRESHOLD:
            return CalcStatus.ACCEPTABLE
        return CalcStatus.NON_COMPLIANT

    @staticmethod
    def evaluate(reference_flow: float, measured_flow: float) -> FlowEvaluation:
        if reference_flow <= 0:
            raise ValueError("Reference flow must be positive")
        if measured_flow < 0:
            raise ValueError("Measured flow must be non-negative")
        deviation = FlowCalculator.deviation(reference_flow, measured_flow)
        status = FlowCalculator.status_for(deviation)
        return FlowEvaluation(
            reference_flow=reference_flow,
            measured_flow=measured_flow,
            deviation=deviation,
            status=status,
            color=STATUS_COLORS[status],
        )
