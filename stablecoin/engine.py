"""
engine.py - Collateralized-Debt Engine

The Engine is the central state manager: it owns the per-user ledger of
collateral and debt and is the only module that mutates it.

Key responsibilities:
    - Position operations: deposit, mint, redeem, burn and their composites
    - Liquidation of accounts whose health factor fell below the floor
    - Read surface for balances, valuations and health factors
    - Every mutating call runs in an atomic session: all effects commit or
      none do, and re-entrant calls are refused

Session order for every mutating entry point:
    1. Checks      - validate inputs against the registry and ledger
    2. Effects     - record balance and debt changes in the ledger
    3. Invariants  - re-check solvency on the post-effect ledger
    4. Interactions - transfer tokens, mint, burn (queued, run last)

Any exception restores the ledger snapshot taken on entry and undoes the
interactions that already completed, then propagates unchanged.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Any
import copy
import threading

from .core import (
    # Types
    AccountInformation, EngineEvent, EngineParameters, EventType,
    DebtTokenGate, PriceSource, TransferableBalance,
    # Exceptions
    HealthFactorBroken, HealthFactorNotImproved, HealthFactorOk,
    InsufficientBalance, MintFailed, ReentrantCall, TransferFailed,
    # Helpers
    require_amount,
)
from .health import (
    calculate_health_factor, collateral_value, is_healthy, liquidation_bonus,
    token_amount_from_usd, usd_value,
)
from .oracle import OracleAdapter
from .registry import AssetRegistry


@dataclass
class _Interaction:
    """An external call queued by a session, with its compensating action."""
    description: str
    perform: Callable[[], None]
    undo: Optional[Callable[[], Any]] = None


@dataclass
class _Session:
    """State of one atomic mutating call."""
    operation: str
    pending: List[_Interaction] = field(default_factory=list)
    completed: List[_Interaction] = field(default_factory=list)
    events: List[EngineEvent] = field(default_factory=list)

    def queue(self, interaction: _Interaction) -> None:
        self.pending.append(interaction)


@dataclass(frozen=True)
class _LedgerSnapshot:
    collateral: Dict[str, Dict[str, int]]
    debt: Dict[str, int]
    event_count: int
    next_sequence: int


class Engine:
    """
    Collateral and debt ledger with health-factor enforcement and liquidation.

    Design Principles:
        - Every mutation that can increase debt or decrease collateral is
          followed, in the same session, by a solvency check of the account.
        - Prices are fetched fresh for every valuation; stale feeds fail closed.
        - Debt token supply moves in lockstep with recorded debt.

    Thread Safety:
        Mutating calls are serialized by a per-engine lock. Re-entering any
        mutating call from the thread that holds the session raises
        ReentrantCall. Read methods take no lock.

    Example:
        debt_token = DebtToken()
        engine = Engine(
            "main",
            assets=["WETH"],
            price_sources=[StaticPriceFeed(2000 * 10**8, now)],
            custodies=[TokenCustody(weth)],
            debt_gate=debt_token.grant_minter(),
            initial_time=now,
        )
        engine.deposit_and_mint("alice", "WETH", 10 * 10**18, 5_000 * 10**18)
    """

    def __init__(
        self,
        name: str,
        assets: Sequence[str],
        price_sources: Sequence[PriceSource],
        custodies: Sequence[TransferableBalance],
        debt_gate: DebtTokenGate,
        initial_time: Optional[datetime] = None,
        params: Optional[EngineParameters] = None,
        verbose: bool = True,
    ):
        """
        Create an engine.

        Args:
            name: Engine identifier
            assets: Approved collateral asset symbols
            price_sources: One price source per asset, same order
            custodies: One transfer capability per asset, same order
            debt_gate: Sole mint/burn credential over the debt token
            initial_time: Starting logical time (default: 1970-01-01)
            params: Protocol constants (default: EngineParameters())
            verbose: Print one line per applied or rejected operation

        Raises:
            LengthMismatch: If the asset, price source and custody sequences differ.
        """
        self.name = name
        self.params = params or EngineParameters()
        self.registry = AssetRegistry(assets, price_sources, custodies)
        self.debt_gate = debt_gate
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.oracle = OracleAdapter(self.registry, lambda: self._current_time, self.params.oracle_timeout)

        self._collateral: Dict[str, Dict[str, int]] = {}
        self._debt: Dict[str, int] = {}
        self.event_log: List[EngineEvent] = []
        self._next_sequence: int = 0

        self._lock = threading.Lock()
        self._session: Optional[_Session] = None
        self._session_owner: Optional[int] = None

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the engine (used for staleness checks)."""
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    def advance_by(self, delta: timedelta) -> None:
        self.advance_time(self._current_time + delta)

    # ========================================================================
    # READ SURFACE
    # ========================================================================

    def collateral_balance(self, user: str, asset: str) -> int:
        """
        Collateral of one asset recorded for a user.

        Raises:
            AssetNotAllowed: If the asset is not registered
        """
        self.registry.get(asset)
        return self._collateral.get(user, {}).get(asset, 0)

    def collateral_balances(self, user: str) -> Dict[str, int]:
        """All recorded collateral of a user, including zero balances."""
        held = self._collateral.get(user, {})
        return {symbol: held.get(symbol, 0) for symbol in self.registry.symbols}

    def debt_of(self, user: str) -> int:
        """Debt token amount minted by a user."""
        return self._debt.get(user, 0)

    def collateral_value(self, user: str) -> int:
        """
        USD value (18 decimals) of all of a user's collateral.

        Every registered asset is priced, so a stale feed for any asset
        fails the valuation.
        """
        held = self._collateral.get(user, {})
        holdings = [
            (held.get(symbol, 0), self.oracle.fresh_price(symbol))
            for symbol in self.registry.symbols
        ]
        return collateral_value(holdings, self.params)

    def account_information(self, user: str) -> AccountInformation:
        return AccountInformation(
            total_debt=self.debt_of(user),
            collateral_value_usd=self.collateral_value(user),
        )

    def health_factor(self, user: str) -> int:
        """Current health factor of a user, scaled by PRECISION."""
        info = self.account_information(user)
        return calculate_health_factor(info.total_debt, info.collateral_value_usd, self.params)

    def calculate_health_factor(self, total_debt: int, collateral_value_usd: int) -> int:
        """Health factor for arbitrary (debt, collateral value) under this engine's parameters."""
        return calculate_health_factor(total_debt, collateral_value_usd, self.params)

    def usd_value(self, asset: str, amount: int) -> int:
        """USD value (18 decimals) of amount units of asset at a fresh price."""
        return usd_value(amount, self.oracle.fresh_price(asset), self.params)

    def token_amount_from_usd(self, asset: str, usd_amount: int) -> int:
        """Units of asset worth usd_amount (18 decimals) at a fresh price."""
        return token_amount_from_usd(usd_amount, self.oracle.fresh_price(asset), self.params)

    @property
    def collateral_assets(self) -> Tuple[str, ...]:
        return self.registry.symbols

    def price_source(self, asset: str) -> Optional[PriceSource]:
        return self.registry.price_source(asset)

    def list_users(self) -> Set[str]:
        """Users that ever held collateral or debt."""
        return set(self._collateral) | set(self._debt)

    def total_debt(self) -> int:
        """Sum of all users' minted debt. Users are sorted for a deterministic order."""
        return sum(self._debt[u] for u in sorted(self._debt))

    def total_collateral(self, asset: str) -> int:
        """Pooled collateral of one asset across all users."""
        self.registry.get(asset)
        return sum(held.get(asset, 0) for _, held in sorted(self._collateral.items()))

    # Protocol constants

    @property
    def precision(self) -> int:
        return self.params.precision

    @property
    def liquidation_threshold(self) -> int:
        return self.params.liquidation_threshold

    @property
    def liquidation_precision(self) -> int:
        return self.params.liquidation_precision

    @property
    def liquidation_bonus(self) -> int:
        return self.params.liquidation_bonus

    @property
    def min_health_factor(self) -> int:
        return self.params.min_health_factor

    @property
    def oracle_timeout(self) -> timedelta:
        return self.params.oracle_timeout

    def verify_invariants(self) -> Dict[str, Any]:
        """
        Verify the ledger's global invariants.

        Checks:
        1. Debt token supply equals total recorded debt
        2. Every user with debt is at or above the minimum health factor
        3. Pooled collateral value covers total debt (global overcollateralization)

        Prices are fetched fresh, so this raises StalePrice when a feed stalls.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all invariants hold
            - 'total_debt': int - Sum of recorded debt
            - 'debt_supply': int - Debt token total supply
            - 'collateral_value': int - USD value of the pooled collateral
            - 'discrepancies': List[Dict] - Details of any violations
        """
        discrepancies = []
        total_debt = self.total_debt()
        debt_supply = self.debt_gate.total_supply()
        if debt_supply != total_debt:
            discrepancies.append({
                'invariant': 'debt_supply',
                'expected': total_debt,
                'actual': debt_supply,
            })

        for user in sorted(self._debt):
            if self._debt[user] == 0:
                continue
            hf = self.health_factor(user)
            if not is_healthy(hf, self.params):
                discrepancies.append({
                    'invariant': 'health_factor',
                    'user': user,
                    'actual': hf,
                })

        pooled_value = collateral_value(
            [(self.total_collateral(s), self.oracle.fresh_price(s)) for s in self.registry.symbols],
            self.params,
        )
        if pooled_value < total_debt:
            discrepancies.append({
                'invariant': 'overcollateralization',
                'expected': total_debt,
                'actual': pooled_value,
            })

        return {
            'valid': len(discrepancies) == 0,
            'total_debt': total_debt,
            'debt_supply': debt_supply,
            'collateral_value': pooled_value,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # POSITION OPERATIONS (Mutating)
    # ========================================================================

    def deposit_collateral(self, user: str, asset: str, amount: int) -> Tuple[EngineEvent, ...]:
        """
        Deposit approved collateral.

        Raises:
            ZeroAmount: If amount is zero
            AssetNotAllowed: If asset is not registered
            TransferFailed: If the custody refuses the transfer in
        """
        with self._atomic("deposit_collateral") as session:
            self._deposit_collateral(session, user, asset, amount)
        return tuple(session.events)

    def mint_debt(self, user: str, amount: int) -> Tuple[EngineEvent, ...]:
        """
        Mint debt tokens against the user's collateral.

        Raises:
            ZeroAmount: If amount is zero
            HealthFactorBroken: If the user would end below the minimum
            MintFailed: If the debt token gate refuses to mint
        """
        with self._atomic("mint_debt") as session:
            self._mint_debt(session, user, amount)
            self._revert_if_health_factor_is_broken(user)
        return tuple(session.events)

    def deposit_and_mint(
        self, user: str, asset: str, collateral_amount: int, debt_amount: int
    ) -> Tuple[EngineEvent, ...]:
        """Deposit collateral and mint debt in one atomic operation."""
        with self._atomic("deposit_and_mint") as session:
            self._deposit_collateral(session, user, asset, collateral_amount)
            self._mint_debt(session, user, debt_amount)
            self._revert_if_health_factor_is_broken(user)
        return tuple(session.events)

    def redeem_collateral(self, user: str, asset: str, amount: int) -> Tuple[EngineEvent, ...]:
        """
        Withdraw collateral back to the user.

        Raises:
            ZeroAmount: If amount is zero
            InsufficientBalance: If amount exceeds the recorded balance
            HealthFactorBroken: If the user would end below the minimum
            TransferFailed: If the custody refuses the transfer out
        """
        with self._atomic("redeem_collateral") as session:
            self._redeem_collateral(session, asset, amount, user, user)
            self._revert_if_health_factor_is_broken(user)
        return tuple(session.events)

    def burn_debt(self, user: str, amount: int) -> Tuple[EngineEvent, ...]:
        """
        Repay debt with the user's own debt tokens (the user must approve the engine).

        Raises:
            ZeroAmount: If amount is zero
            InsufficientBalance: If amount exceeds the user's debt
            TransferFailed: If the debt tokens cannot be pulled
        """
        with self._atomic("burn_debt") as session:
            self._burn_debt(session, amount, on_behalf_of=user, payer=user)
            # Re-prices collateral, so a stale feed also blocks repayment.
            self._revert_if_health_factor_is_broken(user)
        return tuple(session.events)

    def redeem_for_burn(
        self, user: str, asset: str, collateral_amount: int, debt_amount: int
    ) -> Tuple[EngineEvent, ...]:
        """Burn debt, then redeem collateral, in one atomic operation."""
        with self._atomic("redeem_for_burn") as session:
            self._burn_debt(session, debt_amount, on_behalf_of=user, payer=user)
            self._redeem_collateral(session, asset, collateral_amount, user, user)
            self._revert_if_health_factor_is_broken(user)
        return tuple(session.events)

    # ========================================================================
    # LIQUIDATION (Mutating)
    # ========================================================================

    def liquidate(
        self, liquidator: str, asset: str, user: str, debt_to_cover: int
    ) -> Tuple[EngineEvent, ...]:
        """
        Repay part of an unsafe account's debt in exchange for its collateral plus a bonus.

        The liquidator pays debt_to_cover debt tokens (approved to the engine)
        and receives the equivalent amount of `asset` at the current price,
        plus LIQUIDATION_BONUS percent.

        Steps:
        1. The user must be below the minimum health factor
        2. Convert debt_to_cover to collateral units, add the bonus
        3. Pull the liquidator's debt tokens and extinguish the user's debt
        4. Move the seized collateral from the user to the liquidator
        5. The user's health factor must not have decreased
        6. The liquidator must still be healthy

        Raises:
            ZeroAmount: If debt_to_cover is zero
            HealthFactorOk: If the user is not liquidatable
            InsufficientBalance: If the user holds too little collateral or debt
            HealthFactorNotImproved: If the user ends less healthy than before
            HealthFactorBroken: If the liquidator ends below the minimum
        """
        with self._atomic("liquidate") as session:
            self._liquidate(session, liquidator, asset, user, debt_to_cover)
        return tuple(session.events)

    def _liquidate(
        self, session: _Session, liquidator: str, asset: str, user: str, debt_to_cover: int
    ) -> None:
        require_amount(debt_to_cover)
        self.registry.get(asset)

        starting = self.health_factor(user)
        if is_healthy(starting, self.params):
            raise HealthFactorOk(starting)

        base = self.token_amount_from_usd(asset, debt_to_cover)
        total_seized = base + liquidation_bonus(base, self.params)

        # The debt token pull is queued ahead of the collateral payout.
        self._burn_debt(session, debt_to_cover, on_behalf_of=user, payer=liquidator)
        # Dust covers can round the seizure down to nothing.
        if total_seized > 0:
            self._redeem_collateral(session, asset, total_seized, user, liquidator)

        ending = self.health_factor(user)
        if ending < starting:
            raise HealthFactorNotImproved(starting, ending)
        self._revert_if_health_factor_is_broken(liquidator)

        self._emit(session, EventType.LIQUIDATED, user, debt_to_cover,
                   asset=asset, counterparty=liquidator)

    # ========================================================================
    # LEDGER EFFECTS
    # ========================================================================

    def _deposit_collateral(self, session: _Session, user: str, asset: str, amount: int) -> None:
        require_amount(amount)
        custody = self.registry.custody(asset)

        held = self._collateral.setdefault(user, {})
        held[asset] = held.get(asset, 0) + amount
        self._emit(session, EventType.COLLATERAL_DEPOSITED, user, amount, asset=asset)

        def perform():
            if custody.transfer_in(user, amount) is not True:
                raise TransferFailed(f"transfer of {amount} {asset} from {user} failed")

        session.queue(_Interaction(
            f"transfer_in {amount} {asset} from {user}",
            perform,
            undo=lambda: custody.transfer_out(user, amount),
        ))

    def _mint_debt(self, session: _Session, user: str, amount: int) -> None:
        require_amount(amount)
        self._debt[user] = self._debt.get(user, 0) + amount
        self._emit(session, EventType.DEBT_MINTED, user, amount)

        def perform():
            if self.debt_gate.mint(user, amount) is not True:
                raise MintFailed(f"mint of {amount} to {user} failed")

        # Always the last interaction of its session; nothing can fail after it.
        session.queue(_Interaction(f"mint {amount} to {user}", perform))

    def _redeem_collateral(
        self, session: _Session, asset: str, amount: int, from_user: str, to: str
    ) -> None:
        require_amount(amount)
        custody = self.registry.custody(asset)

        balance = self.collateral_balance(from_user, asset)
        if amount > balance:
            raise InsufficientBalance(
                f"{from_user} holds {balance} {asset}, cannot redeem {amount}"
            )
        self._collateral[from_user][asset] = balance - amount
        self._emit(session, EventType.COLLATERAL_REDEEMED, from_user, amount, asset=asset,
                   counterparty=to if to != from_user else None)

        def perform():
            if custody.transfer_out(to, amount) is not True:
                raise TransferFailed(f"transfer of {amount} {asset} to {to} failed")

        session.queue(_Interaction(f"transfer_out {amount} {asset} to {to}", perform))

    def _burn_debt(self, session: _Session, amount: int, on_behalf_of: str, payer: str) -> None:
        require_amount(amount)
        debt = self.debt_of(on_behalf_of)
        if amount > debt:
            raise InsufficientBalance(f"{on_behalf_of} owes {debt}, cannot burn {amount}")
        self._debt[on_behalf_of] = debt - amount
        self._emit(session, EventType.DEBT_BURNED, on_behalf_of, amount,
                   counterparty=payer if payer != on_behalf_of else None)

        def perform():
            if self.debt_gate.pull(payer, amount) is not True:
                raise TransferFailed(f"pull of {amount} debt tokens from {payer} failed")
            try:
                self.debt_gate.burn(amount)
            except BaseException:
                self.debt_gate.push(payer, amount)
                raise

        # The engine is the sole minter, so re-issuing restores the payer exactly.
        session.queue(_Interaction(
            f"retire {amount} debt tokens from {payer}",
            perform,
            undo=lambda: self.debt_gate.mint(payer, amount),
        ))

    def _revert_if_health_factor_is_broken(self, user: str) -> None:
        hf = self.health_factor(user)
        if not is_healthy(hf, self.params):
            raise HealthFactorBroken(hf, user)

    def _emit(
        self,
        session: _Session,
        event_type: EventType,
        user: str,
        amount: int,
        asset: Optional[str] = None,
        counterparty: Optional[str] = None,
    ) -> None:
        event = EngineEvent(
            event_type=event_type,
            user=user,
            amount=amount,
            timestamp=self._current_time,
            sequence_number=self._next_sequence,
            asset=asset,
            counterparty=counterparty,
        )
        self._next_sequence += 1
        self.event_log.append(event)
        session.events.append(event)

    # ========================================================================
    # SESSIONS
    # ========================================================================

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[_Session]:
        """
        Run one mutating entry point as an all-or-nothing session.

        The body performs checks and ledger effects and queues interactions;
        the queued interactions run after the body returns. On any exception
        the ledger snapshot is restored and completed interactions are undone
        in reverse order. The guard is released on every exit path.
        """
        ident = threading.get_ident()
        if self._session_owner == ident:
            raise ReentrantCall(
                f"{operation} entered while {self._session.operation} is in progress"
            )

        with self._lock:
            session = _Session(operation)
            self._session = session
            self._session_owner = ident
            snapshot = self._snapshot()
            try:
                yield session
                for interaction in session.pending:
                    interaction.perform()
                    session.completed.append(interaction)
            except BaseException as exc:
                self._restore(snapshot)
                self._undo(session, exc)
                if self.verbose:
                    print(f"✗ REJECTED: {operation}: {type(exc).__name__}: {exc}")
                raise
            finally:
                self._session = None
                self._session_owner = None

        if self.verbose:
            self._print_result(session)

    def _undo(self, session: _Session, cause: BaseException) -> None:
        failed = []
        for interaction in reversed(session.completed):
            if interaction.undo is None:
                continue
            try:
                undone = interaction.undo()
            except Exception:
                undone = False
            if undone is not True:
                failed.append(interaction.description)
        if failed:
            raise TransferFailed(
                f"rollback of {session.operation} could not undo: {', '.join(failed)}"
            ) from cause

    def _snapshot(self) -> _LedgerSnapshot:
        return _LedgerSnapshot(
            collateral=copy.deepcopy(self._collateral),
            debt=dict(self._debt),
            event_count=len(self.event_log),
            next_sequence=self._next_sequence,
        )

    def _restore(self, snapshot: _LedgerSnapshot) -> None:
        self._collateral = snapshot.collateral
        self._debt = snapshot.debt
        del self.event_log[snapshot.event_count:]
        self._next_sequence = snapshot.next_sequence

    def _print_result(self, session: _Session) -> None:
        print(f"✓ APPLIED: {session.operation}")
        for event in session.events:
            print(f"    {event!r}")

    def __repr__(self) -> str:
        return (
            f"Engine({self.name}, assets={list(self.registry.symbols)}, "
            f"users={len(self.list_users())}, total_debt={self.total_debt()})"
        )


