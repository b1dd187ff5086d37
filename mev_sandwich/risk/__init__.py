"""Portfolio risk limits and the emergency stop"""

from mev_sandwich.risk.risk_gate import PortfolioState, Position, RiskGate

__all__ = ["PortfolioState", "Position", "RiskGate"]
