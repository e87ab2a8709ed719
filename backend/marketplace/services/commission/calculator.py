"""
Commission calculator for multi-party order splits.

Pure functions over ``Decimal`` money. Every line is rounded to cents
(ROUND_HALF_UP) before being summed, so per-payee settlement records built
from the same lines add up exactly to the order-level figures.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from marketplace.core.errors import InvalidInputError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0.00")
# platform default when a sourcing agent has no configured rate
DEFAULT_SOURCING_AGENT_RATE = Decimal("10")

MoneyLike = Union[Decimal, int, float, str]


def to_money(value: MoneyLike) -> Decimal:
    """
    Convert a numeric value to a cent-quantized Decimal.

    Floats go through ``str`` so 19.99 stays 19.99.

    Raises:
        InvalidInputError: If the value is not numeric
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as e:
        raise InvalidInputError(f"Invalid monetary amount: {value!r}", value=str(value)) from e


@dataclass(frozen=True)
class CommissionLine:
    """
    One priced order line as seen by the calculator.

    Attributes:
        unit_price: Price charged per unit
        quantity: Units sold, must be positive
        commission_rate: Platform percentage of line revenue
        sourcing_agent_rate: Agent percentage, None to use the default
        has_sourcing_agent: True when the product is agent-owned
    """

    unit_price: Decimal
    quantity: int
    commission_rate: Decimal
    sourcing_agent_rate: Optional[Decimal] = None
    has_sourcing_agent: bool = False

    @property
    def revenue(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity


@dataclass(frozen=True)
class CommissionBreakdown:
    """Platform and sourcing-agent commission for a set of lines."""

    commission: Decimal = ZERO
    sourcing_agent_commission: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.commission + self.sourcing_agent_commission

    def __add__(self, other: "CommissionBreakdown") -> "CommissionBreakdown":
        return CommissionBreakdown(
            commission=self.commission + other.commission,
            sourcing_agent_commission=(
                self.sourcing_agent_commission + other.sourcing_agent_commission
            ),
        )


def resolve_agent_rate(configured_rate: Optional[Decimal], default_rate: Decimal) -> Decimal:
    """
    Return the sourcing-agent percentage to apply.

    The agent's own configured rate wins; otherwise ``default_rate``
    (the platform setting, passed in by the caller) applies.
    """
    if configured_rate is not None:
        return Decimal(configured_rate)
    return Decimal(default_rate)


def _validate_line(line: CommissionLine) -> None:
    if line.quantity <= 0:
        raise InvalidInputError(
            "Quantity must be positive",
            quantity=line.quantity,
        )
    if Decimal(line.unit_price) < 0:
        raise InvalidInputError(
            "Unit price cannot be negative",
            unit_price=str(line.unit_price),
        )
    if not (0 <= Decimal(line.commission_rate) <= HUNDRED):
        raise InvalidInputError(
            "Commission rate must be between 0 and 100",
            commission_rate=str(line.commission_rate),
        )


def line_commission(
    line: CommissionLine,
    default_agent_rate: Decimal = DEFAULT_SOURCING_AGENT_RATE,
) -> CommissionBreakdown:
    """
    Compute the cent-rounded commission for a single line.

    Args:
        line: Priced order line
        default_agent_rate: Agent percentage for lines without their own rate

    Returns:
        Breakdown for this line alone

    Raises:
        InvalidInputError: If quantity, price or rate is out of range
    """
    _validate_line(line)
    revenue = line.revenue

    commission = to_money(revenue * Decimal(line.commission_rate) / HUNDRED)

    agent_commission = ZERO
    if line.has_sourcing_agent:
        rate = resolve_agent_rate(line.sourcing_agent_rate, default_agent_rate)
        agent_commission = to_money(revenue * rate / HUNDRED)

    return CommissionBreakdown(
        commission=commission,
        sourcing_agent_commission=agent_commission,
    )


def calculate_commission(
    lines: Iterable[CommissionLine],
    default_agent_rate: Decimal = DEFAULT_SOURCING_AGENT_RATE,
) -> CommissionBreakdown:
    """
    Sum platform and sourcing-agent commission over all lines.

    Example:
        >>> calculate_commission([CommissionLine(Decimal("100"), 2, Decimal("5"))])
        CommissionBreakdown(commission=Decimal('10.00'), sourcing_agent_commission=Decimal('0.00'))
    """
    breakdown = CommissionBreakdown()
    for line in lines:
        breakdown = breakdown + line_commission(line, default_agent_rate)
    return breakdown


def compute_payout(total: Decimal, breakdown: CommissionBreakdown) -> Decimal:
    """
    Amount owed to the supplier after both commissions.

    The result may be negative; callers decide how to surface that.
    """
    return to_money(Decimal(total) - breakdown.commission - breakdown.sourcing_agent_commission)
