"""
market.py - Test market builder and collaborator doubles

- Market / build_market: an engine wired to two tokens, two feeds and a debt token
- ledger_state: snapshot of everything a rejected operation must leave untouched
- Collaborator doubles: custodies, gates and feeds that refuse, fail or re-enter
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from stablecoin import (
    Engine,
    Token, TokenCustody, DebtToken, MintAuthority,
    StaticPriceFeed,
    ENGINE_WALLET,
)


ETHER = 10 ** 18
FEED_UNIT = 10 ** 8
START = datetime(2025, 1, 1)

WETH_PRICE = 2000 * FEED_UNIT
WBTC_PRICE = 1000 * FEED_UNIT


# =============================================================================
# MARKET
# =============================================================================

@dataclass
class Market:
    """An engine together with every collaborator wired into it."""
    engine: Engine
    weth: Token
    wbtc: Token
    dsc: DebtToken
    weth_feed: StaticPriceFeed
    wbtc_feed: StaticPriceFeed

    def token(self, asset: str) -> Token:
        return {"WETH": self.weth, "WBTC": self.wbtc}[asset]

    def fund(self, user: str, asset: str, amount: int) -> None:
        """Give a user collateral tokens and approve the engine to pull them."""
        token = self.token(asset)
        token.mint_to(user, amount)
        token.approve(user, ENGINE_WALLET, token.allowance(user, ENGINE_WALLET) + amount)

    def approve_debt(self, user: str, amount: int) -> None:
        self.dsc.approve(user, ENGINE_WALLET, amount)

    def open_position(self, user: str, collateral: int, debt: int, asset: str = "WETH") -> None:
        self.fund(user, asset, collateral)
        self.engine.deposit_and_mint(user, asset, collateral, debt)

    def set_price(self, asset: str, price: int) -> None:
        """Publish a new price stamped with the engine's current time."""
        feed = self.weth_feed if asset == "WETH" else self.wbtc_feed
        feed.update_price(price, self.engine.current_time)

    def refresh_feeds(self) -> None:
        self.set_price("WETH", self.weth_feed.price)
        self.set_price("WBTC", self.wbtc_feed.price)


def build_market(
    weth_price: int = WETH_PRICE,
    wbtc_price: int = WBTC_PRICE,
    start: datetime = START,
    weth: Optional[Token] = None,
    weth_custody=None,
    debt_gate_wrapper: Optional[Callable[[MintAuthority], Any]] = None,
    **engine_kwargs,
) -> Market:
    weth = weth or Token("WETH", "Wrapped Ether")
    wbtc = Token("WBTC", "Wrapped Bitcoin")
    dsc = DebtToken()
    weth_feed = StaticPriceFeed(weth_price, start)
    wbtc_feed = StaticPriceFeed(wbtc_price, start)
    gate = dsc.grant_minter()
    if debt_gate_wrapper is not None:
        gate = debt_gate_wrapper(gate)
    engine_kwargs.setdefault("verbose", False)
    engine = Engine(
        "test",
        assets=["WETH", "WBTC"],
        price_sources=[weth_feed, wbtc_feed],
        custodies=[weth_custody or TokenCustody(weth), TokenCustody(wbtc)],
        debt_gate=gate,
        initial_time=start,
        **engine_kwargs,
    )
    return Market(engine, weth, wbtc, dsc, weth_feed, wbtc_feed)


def ledger_state(market: Market) -> Dict[str, Any]:
    """Everything a failed operation must leave untouched."""
    engine = market.engine
    users = sorted(engine.list_users() | {"alice", "bob", "liquidator"})
    wallets = users + [ENGINE_WALLET]
    return {
        "collateral": {u: engine.collateral_balances(u) for u in users},
        "debt": {u: engine.debt_of(u) for u in users},
        "events": list(engine.event_log),
        "weth": {w: market.weth.balance_of(w) for w in wallets},
        "wbtc": {w: market.wbtc.balance_of(w) for w in wallets},
        "dsc": {w: market.dsc.balance_of(w) for w in wallets},
        "dsc_supply": market.dsc.total_supply(),
    }


# =============================================================================
# COLLABORATOR DOUBLES
# =============================================================================

class HookedToken(Token):
    """Token that runs `hook` before every transfer_from (a callback into the caller)."""

    def __init__(self, symbol: str, name: str):
        super().__init__(symbol, name)
        self.hook: Optional[Callable[[], Any]] = None

    def transfer_from(self, spender, owner, to, amount):
        if self.hook is not None:
            self.hook()
        return super().transfer_from(spender, owner, to, amount)


class RefusingCustody(TokenCustody):
    """Custody whose transfers succeed until `refuse_out` / `refuse_in` is set."""

    def __init__(self, token: Token):
        super().__init__(token)
        self.refuse_in = False
        self.refuse_out = False

    def transfer_in(self, owner, amount):
        if self.refuse_in:
            return False
        return super().transfer_in(owner, amount)

    def transfer_out(self, to, amount):
        if self.refuse_out:
            return False
        return super().transfer_out(to, amount)


class RefusingGate:
    """Debt token gate that delegates to a real authority but can refuse to mint."""

    def __init__(self, authority: MintAuthority):
        self.authority = authority
        self.refuse_mint = False

    def mint(self, to, amount):
        if self.refuse_mint:
            return False
        return self.authority.mint(to, amount)

    def burn(self, amount):
        self.authority.burn(amount)

    def pull(self, owner, amount):
        return self.authority.pull(owner, amount)

    def push(self, to, amount):
        return self.authority.push(to, amount)

    def total_supply(self):
        return self.authority.total_supply()


class BrokenFeed:
    """Price source that raises on every read."""
    decimals = 8

    def latest_price(self):
        raise ConnectionError("feed offline")


class FixedFeed:
    """Price source returning an arbitrary (possibly malformed) answer."""

    def __init__(self, price, updated_at: datetime, decimals: int = 8):
        self.price = price
        self.updated_at = updated_at
        self.decimals = decimals

    def latest_price(self):
        return self.price, self.updated_at


def stale_delta(engine: Engine) -> timedelta:
    """Smallest clock advance that makes every untouched feed stale."""
    return engine.oracle_timeout + timedelta(seconds=1)
