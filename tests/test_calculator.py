# tests/test_calculator.py
import pytest

from domain.calculator import CalcStatus, FlowCalculator, STATUS_COLORS


class TestFlowCalculator:

    @pytest.mark.parametrize("reference, measured, status", [
        (1000, 1000, CalcStatus.COMPLIANT),
        (1000, 905, CalcStatus.COMPLIANT),
        (1000, 1095, CalcStatus.COMPLIANT),
        (1000, 1150, CalcStatus.ACCEPTABLE),
        (1000, 805, CalcStatus.ACCEPTABLE),
        (1000, 1201, CalcStatus.NON_COMPLIANT),
        (1000, 0, CalcStatus.NON_COMPLIANT),
    ])
    def test_status(self, reference, measured, status):
        assert FlowCalculator.evaluate(reference, measured).status == status

    def test_evaluation(self):
        evaluation = FlowCalculator.evaluate(1200, 1260)
        assert evaluation.deviation == pytest.approx(5.0)
        assert evaluation.color == STATUS_COLORS[CalcStatus.COMPLIANT]

    def test_negative_deviation(self):
        assert FlowCalculator.deviation(200, 150) == pytest.approx(-25.0)

    @pytest.mark.parametrize("reference, measured", [(0, 10), (-5, 10), (100, -1)])
    def test_invalid_input(self, reference, measured):
        with pytest.raises(ValueError):
            FlowCalculator.evaluate(reference, measured)
