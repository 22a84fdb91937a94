from __future__ import annotations

from typing import List, Optional

from realtygame.calculations import annuity_payment, round_money
from realtygame.logging import get_logger
from realtygame.models import GameEvent, Loan, Player

logger = get_logger(__name__)


def monthly_interest(loan: Loan) -> float:
    return float(loan.remaining_principal) * float(loan.annual_rate) / 100.0 / 12.0


def apply_payment(loan: Loan) -> int:
    """Amortize one scheduled payment in place; return the cash to deduct.

    The full ``monthly_payment`` is always charged, even when it exceeds what is
    left of the principal; the overshoot is simply lost to the player.
    """
    principal_part = float(loan.monthly_payment) - monthly_interest(loan)
    loan.remaining_principal = max(0, round_money(float(loan.remaining_principal) - principal_part))
    return int(loan.monthly_payment)


def originate_loan(
    loan_id: str,
    player_id: str,
    principal: int,
    annual_rate: float,
    term_months: int,
    now: int,
    payment_interval_ms: int,
    property_id: Optional[str] = None,
    loan_type: str = "ипотека",
) -> Loan:
    return Loan(
        loan_id=loan_id,
        player_id=player_id,
        property_id=property_id,
        principal=int(principal),
        remaining_principal=int(principal),
        annual_rate=float(annual_rate),
        monthly_payment=annuity_payment(principal, annual_rate, term_months),
        loan_type=loan_type,
        payment_interval_ms=int(payment_interval_ms),
        next_payment_at=int(now) + int(payment_interval_ms),
    )


def settle_paid_off(player: Player, now: int) -> List[GameEvent]:
    """Drop zero-balance loans, clearing the secured property's back-reference."""
    events: List[GameEvent] = []
    keep: List[Loan] = []
    for loan in player.loans:
        if loan.remaining_principal > 0:
            keep.append(loan)
            continue
        for p in player.properties:
            if p.loan_id == loan.loan_id:
                p.loan_id = None
        logger.debug("loan %s paid off for player %s", loan.loan_id, player.player_id)
        events.append(
            GameEvent(
                event_id=f"loan-paid-{int(now)}-{loan.loan_id}",
                timestamp=int(now),
                message="✅ Кредит погашен!",
                severity="success",
            )
        )
    player.loans = keep
    return events
