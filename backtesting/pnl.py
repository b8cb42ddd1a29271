"""
backtesting/pnl.py - Profit and loss arithmetic

Pure functions shared by the batch engine and the live simulator. Nothing
here rounds: accumulators keep full precision and only public summaries go
through ``round_money``.
"""

from dataclasses import dataclass

from core.contracts import Direction


@dataclass(frozen=True)
class PnLBreakdown:
    """Realized P&L of one round trip."""
    gross_pnl: float
    commission: float
    net_pnl: float
    return_percent: float  # net P&L relative to capital at risk


def round_money(value: float) -> float:
    return round(float(value), 2)


def apply_slippage(price: float, direction: Direction, slippage: float) -> float:
    """Adverse fill: longs pay up, shorts sell lower."""
    return price * (1 + direction.sign * slippage)


def calculate_unrealized_pnl(
    direction: Direction,
    entry_price: float,
    mark_price: float,
    quantity: float,
) -> float:
    """Gross mark-to-market P&L, no commission."""
    return direction.sign * (mark_price - entry_price) * quantity


def calculate_commission(capital_at_risk: float, commission_rate: float) -> float:
    """Round-trip commission (entry + exit) charged on capital at risk."""
    return capital_at_risk * commission_rate * 2


def calculate_pnl(
    direction: Direction,
    entry_price: float,
    exit_price: float,
    quantity: float,
    capital_at_risk: float,
    commission_rate: float,
) -> PnLBreakdown:
    """
    Realized P&L of a closed position.

    gross = sign * (exit - entry) * quantity
    commission = capital_at_risk * rate * 2
    net = gross - commission

    Leverage is already folded into ``quantity`` by the sizer.
    """
    gross = calculate_unrealized_pnl(direction, entry_price, exit_price, quantity)
    commission = calculate_commission(capital_at_risk, commission_rate)
    net = gross - commission
    return_percent = (net / capital_at_risk) * 100 if capital_at_risk > 0 else 0.0
    return PnLBreakdown(
        gross_pnl=gross,
        commission=commission,
        net_pnl=net,
        return_percent=return_percent,
    )
