"""
Core types, constants and protocols for the collateralized-debt engine.

This module provides the foundational pieces shared by every other module:
1. Constants: fixed-point precision and the default protocol parameters
2. Exceptions: EngineError and the domain-specific error taxonomy
3. Protocols: capability interfaces for the external collaborators
   (price sources, transferable balances, the debt token gate)
4. Immutable data structures: PriceQuote, AccountInformation, EngineEvent,
   EngineParameters

All on-ledger quantities are Python ints interpreted as fixed-point numbers
with 18 decimals. Nothing in the engine uses floating point.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale shared by the debt token, collateral quantities and
# normalized prices.
PRECISION = 10 ** 18
PRECISION_DECIMALS = 18

# Only LIQUIDATION_THRESHOLD / LIQUIDATION_PRECISION of nominal collateral
# value counts toward solvency (50% -> 200% collateralization).
LIQUIDATION_THRESHOLD = 50
LIQUIDATION_PRECISION = 100

# Paid to liquidators on top of the collateral equivalent of the covered debt.
LIQUIDATION_BONUS = 10

# Exactly 1.0 in fixed point. Accounts at or above this are safe.
MIN_HEALTH_FACTOR = 10 ** 18

# Health factor of an account with no debt.
MAX_HEALTH_FACTOR = 2 ** 256 - 1

# Prices older than this make the protocol fail closed for the asset.
ORACLE_TIMEOUT = timedelta(hours=3)

# Identity under which the engine holds pooled collateral and pulled debt.
ENGINE_WALLET = "engine"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


# --- configuration ----------------------------------------------------------

class ConfigurationError(EngineError):
    """Raised when the engine or its registry cannot be constructed."""
    pass


class LengthMismatch(ConfigurationError):
    """Raised when asset and price source sequences differ in length."""
    pass


class DuplicateAsset(ConfigurationError):
    """Raised when the same asset symbol is registered twice."""
    pass


# --- input validation -------------------------------------------------------

class InputError(EngineError):
    """Raised for malformed caller input. No state is mutated."""
    pass


class ZeroAmount(InputError):
    """Raised when an operation requires an amount greater than zero."""
    pass


class InvalidAmount(InputError):
    """Raised when an amount is not a non-negative int."""
    pass


class AssetNotAllowed(InputError):
    """Raised when an asset is not in the registry."""
    pass


class InsufficientBalance(InputError):
    """Raised when a withdrawal exceeds the recorded collateral or debt."""
    pass


# --- invariant violations ---------------------------------------------------

class InvariantError(EngineError):
    """Raised when an operation would leave an account in a forbidden state."""
    pass


class HealthFactorBroken(InvariantError):
    """Raised when an account ends an operation below MIN_HEALTH_FACTOR."""

    def __init__(self, health_factor: int, user: Optional[str] = None):
        self.health_factor = health_factor
        self.user = user
        who = f" for {user}" if user else ""
        super().__init__(f"health factor broken{who}: {health_factor}")


class HealthFactorOk(InvariantError):
    """Raised when liquidating an account that is not liquidatable."""

    def __init__(self, health_factor: int):
        self.health_factor = health_factor
        super().__init__(f"health factor ok: {health_factor}")


class HealthFactorNotImproved(InvariantError):
    """Raised when a liquidation leaves the target less healthy than before."""

    def __init__(self, before: int, after: int):
        self.before = before
        self.after = after
        super().__init__(f"health factor not improved: {before} -> {after}")


# --- external dependencies --------------------------------------------------

class ExternalError(EngineError):
    """Raised when a collaborator fails. The whole operation is undone."""
    pass


class TransferFailed(ExternalError):
    """Raised when a collateral or debt token transfer does not return True."""
    pass


class MintFailed(ExternalError):
    """Raised when the debt token gate refuses to mint."""
    pass


class OracleUnreachable(ExternalError):
    """Raised when a price source errors."""
    pass


class StalePrice(ExternalError):
    """Raised when a price quote is older than the staleness bound."""

    def __init__(self, asset: str, updated_at: datetime, now: datetime, max_age: timedelta):
        self.asset = asset
        self.updated_at = updated_at
        self.now = now
        self.max_age = max_age
        super().__init__(
            f"stale price for {asset}: updated {updated_at}, now {now}, max age {max_age}"
        )


class InvalidPrice(ExternalError):
    """Raised when a price is zero, negative or not an integer."""
    pass


# --- concurrency ------------------------------------------------------------

class ReentrantCall(EngineError):
    """Raised when a mutating entry point is entered while another is running."""
    pass


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PriceSource(Protocol):
    """
    A single external price feed for one collateral asset.

    The answer is an integer with `decimals` implied decimal places, quoted
    in USD per whole unit of the asset.
    """
    decimals: int

    def latest_price(self) -> Tuple[int, datetime]:
        """Return (price, updated_at) of the most recent answer."""
        ...


@runtime_checkable
class TransferableBalance(Protocol):
    """
    Movement of one collateral asset between a user and the engine.

    Any return value other than True is treated as failure.
    """

    def transfer_in(self, owner: str, amount: int) -> bool:
        """Pull amount from owner into the engine's custody."""
        ...

    def transfer_out(self, to: str, amount: int) -> bool:
        """Send amount from the engine's custody to `to`."""
        ...


@runtime_checkable
class DebtTokenGate(Protocol):
    """
    The engine's sole credential over the debt token.

    Only the holder of this capability can create or destroy debt tokens.
    """

    def mint(self, to: str, amount: int) -> bool:
        """Create amount tokens for `to`."""
        ...

    def burn(self, amount: int) -> None:
        """Destroy amount tokens held by the engine."""
        ...

    def pull(self, owner: str, amount: int) -> bool:
        """Move amount tokens from owner to the engine (transferFrom)."""
        ...

    def push(self, to: str, amount: int) -> bool:
        """Move amount tokens from the engine back to `to`."""
        ...

    def total_supply(self) -> int:
        """Return the total debt token supply."""
        ...


# ============================================================================
# VALUE TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceQuote:
    """
    A single price observation, fetched on demand and never cached.

    Attributes:
        asset: Collateral asset symbol the quote is for.
        price: Raw integer answer from the source.
        updated_at: When the source last updated the answer.
        decimals: Implied decimal places of `price`.
    """
    asset: str
    price: int
    updated_at: datetime
    decimals: int

    @property
    def normalized(self) -> int:
        """Price scaled to PRECISION_DECIMALS (truncating when finer)."""
        if self.decimals <= PRECISION_DECIMALS:
            return self.price * 10 ** (PRECISION_DECIMALS - self.decimals)
        return self.price // 10 ** (self.decimals - PRECISION_DECIMALS)


@dataclass(frozen=True, slots=True)
class AccountInformation:
    """Debt and threshold-free collateral value of one account (both 18-dec USD)."""
    total_debt: int
    collateral_value_usd: int


@dataclass(frozen=True, slots=True)
class EngineParameters:
    """
    Protocol constants, fixed for the lifetime of an engine.

    Defaults reproduce the reference deployment: 50% liquidation threshold,
    10% liquidation bonus, minimum health factor of 1.0 and a 3 hour oracle
    timeout.
    """
    liquidation_threshold: int = LIQUIDATION_THRESHOLD
    liquidation_precision: int = LIQUIDATION_PRECISION
    liquidation_bonus: int = LIQUIDATION_BONUS
    min_health_factor: int = MIN_HEALTH_FACTOR
    precision: int = PRECISION
    oracle_timeout: timedelta = ORACLE_TIMEOUT

    def __post_init__(self):
        for name in ('liquidation_threshold', 'liquidation_precision',
                     'liquidation_bonus', 'min_health_factor', 'precision'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(f"{name} must be int, got {type(value)}")
        if self.liquidation_precision <= 0:
            raise ConfigurationError("liquidation_precision must be positive")
        if not 0 < self.liquidation_threshold <= self.liquidation_precision:
            raise ConfigurationError(
                f"liquidation_threshold must be in (0, {self.liquidation_precision}]"
            )
        if self.liquidation_bonus < 0:
            raise ConfigurationError("liquidation_bonus cannot be negative")
        if self.precision != PRECISION:
            raise ConfigurationError(f"precision must be {PRECISION}, prices are scaled to it")
        if self.oracle_timeout <= timedelta(0):
            raise ConfigurationError("oracle_timeout must be positive")


class EventType(Enum):
    """Kind of a committed engine event."""
    COLLATERAL_DEPOSITED = "collateral_deposited"
    COLLATERAL_REDEEMED = "collateral_redeemed"
    DEBT_MINTED = "debt_minted"
    DEBT_BURNED = "debt_burned"
    LIQUIDATED = "liquidated"


@dataclass(frozen=True, slots=True)
class EngineEvent:
    """
    Immutable audit record of one committed ledger change.

    Attributes:
        event_type: What happened.
        user: Account whose ledger entry changed.
        amount: Quantity moved (collateral units or debt, 18 decimals).
        timestamp: Engine logical time when committed.
        sequence_number: Monotonic within the engine.
        asset: Collateral asset, when one is involved.
        counterparty: Receiver of redeemed collateral or payer of burned
            debt, when different from `user`.
    """
    event_type: EventType
    user: str
    amount: int
    timestamp: datetime
    sequence_number: int
    asset: Optional[str] = None
    counterparty: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"#{self.sequence_number}", self.event_type.value, self.user, str(self.amount)]
        if self.asset:
            parts.append(self.asset)
        if self.counterparty:
            parts.append(f"counterparty={self.counterparty}")
        return f"EngineEvent({' '.join(parts)})"


def require_amount(amount: int) -> None:
    """Validate an operation amount: a positive int."""
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise InvalidAmount(f"amount must be int, got {type(amount).__name__}")
    if amount < 0:
        raise InvalidAmount(f"amount cannot be negative, got {amount}")
    if amount == 0:
        raise ZeroAmount("amount must be more than zero")
