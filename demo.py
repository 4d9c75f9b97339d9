#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Engine Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation   - Tokens, feeds, the engine, opening a position
  4-5:  Safety       - Rejected mints, atomic rollback
  6-8:  Liquidation  - Price crash, liquidation, the bonus
  9:    Oracles      - Stale feeds fail closed

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import sys

from stablecoin import (
    Engine, Token, TokenCustody, DebtToken, StaticPriceFeed,
    EngineError, HealthFactorBroken, StalePrice,
    ENGINE_WALLET, MAX_HEALTH_FACTOR,
)


ETHER = 10 ** 18
FEED_UNIT = 10 ** 8


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    weth_price: int = 2000
    wbtc_price: int = 1000
    crash_price: int = 1500

    alice_collateral: int = 10
    alice_debt: int = 10_000
    liquidator_collateral: int = 20
    liquidator_debt: int = 10_000
    cover: int = 4_000


@dataclass
class World:
    engine: Engine
    weth: Token
    wbtc: Token
    dsc: DebtToken
    feeds: dict = field(default_factory=dict)


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def fmt(amount: int) -> str:
    """Render an 18-decimal fixed-point amount."""
    if amount == MAX_HEALTH_FACTOR:
        return "inf"
    return f"{amount / ETHER:,.4f}"


def show_account(world: World, user: str):
    engine = world.engine
    print(f"{user}:")
    held = ", ".join(f"{k}={fmt(v)}" for k, v in engine.collateral_balances(user).items())
    print(f"  collateral:    {held}")
    print(f"  debt:          {fmt(engine.debt_of(user))} DSC")
    print(f"  value:         ${fmt(engine.collateral_value(user))}")
    print(f"  health factor: {fmt(engine.health_factor(user))}")


# ============================================================================
# PHASE 1: FOUNDATION
# ============================================================================

def step_01_setup() -> World:
    step_header(1, "Tokens, Feeds and the Engine",
        "Wire the engine to its collateral tokens, price feeds and the debt token.")

    print("""
    The engine never owns a token contract. It is handed:

    1. One PRICE FEED per collateral asset (8-decimal USD answers)
    2. One CUSTODY per asset, which moves tokens in and out of the pool
    3. The single MINT AUTHORITY over the debt token (DSC)
    """)

    weth = Token("WETH", "Wrapped Ether")
    wbtc = Token("WBTC", "Wrapped Bitcoin")
    dsc = DebtToken()
    feeds = {
        "WETH": StaticPriceFeed(CONFIG.weth_price * FEED_UNIT, CONFIG.start_time),
        "WBTC": StaticPriceFeed(CONFIG.wbtc_price * FEED_UNIT, CONFIG.start_time),
    }

    print(">>> engine = Engine('tutorial', ['WETH', 'WBTC'], feeds, custodies, dsc.grant_minter())")
    engine = Engine(
        "tutorial",
        assets=["WETH", "WBTC"],
        price_sources=[feeds["WETH"], feeds["WBTC"]],
        custodies=[TokenCustody(weth), TokenCustody(wbtc)],
        debt_gate=dsc.grant_minter(),
        initial_time=CONFIG.start_time,
        verbose=True,
    )

    section_header("Initial State")
    print(f"Engine:        {engine}")
    print(f"Current time:  {engine.current_time}")
    print(f"Threshold:     {engine.liquidation_threshold}% of collateral value counts")
    print(f"Bonus:         {engine.liquidation_bonus}% to liquidators")
    print(f"Oracle limit:  {engine.oracle_timeout}")

    return World(engine, weth, wbtc, dsc, feeds)


def step_02_fund_users(world: World) -> World:
    step_header(2, "Funding Users",
        "Users hold collateral tokens and approve the engine to pull them.")

    for user, amount in (("alice", CONFIG.alice_collateral), ("liquidator", CONFIG.liquidator_collateral)):
        world.weth.mint_to(user, amount * ETHER)
        world.weth.approve(user, ENGINE_WALLET, amount * ETHER)
        print(f">>> weth.mint_to({user!r}, {amount} WETH); weth.approve({user!r}, 'engine', ...)")

    return world


def step_03_open_position(world: World) -> World:
    step_header(3, "Opening a Position",
        "Deposit collateral and mint DSC against it, exactly at the limit.")

    print(f">>> engine.deposit_and_mint('alice', 'WETH', {CONFIG.alice_collateral} WETH, "
          f"{CONFIG.alice_debt:,} DSC)")
    world.engine.deposit_and_mint(
        "alice", "WETH", CONFIG.alice_collateral * ETHER, CONFIG.alice_debt * ETHER
    )
    world.engine.deposit_and_mint(
        "liquidator", "WETH", CONFIG.liquidator_collateral * ETHER, CONFIG.liquidator_debt * ETHER
    )

    section_header("Accounts")
    show_account(world, "alice")
    show_account(world, "liquidator")

    section_header("Key Insight")
    print("""
    health factor = (collateral value * 50%) / debt

    Alice's $20,000 of WETH supports at most $10,000 of DSC. She is at 1.0.
    """)
    return world


# ============================================================================
# PHASE 2: SAFETY
# ============================================================================

def step_04_rejected_mint(world: World) -> World:
    step_header(4, "Rejected Mint",
        "Minting that would push the health factor below 1.0 is refused.")

    print(">>> engine.mint_debt('alice', 1 wei)")
    try:
        world.engine.mint_debt("alice", 1)
    except HealthFactorBroken as e:
        print(f"Refused, health factor would be {fmt(e.health_factor)}")

    print(f"Alice's debt is still {fmt(world.engine.debt_of('alice'))} DSC")
    return world


def step_05_atomicity(world: World) -> World:
    step_header(5, "Atomicity",
        "A failed operation leaves no trace: no balances, no events.")

    events_before = len(world.engine.event_log)
    print(">>> engine.deposit_collateral('bob', 'WETH', 1 WETH)   # bob never approved")
    try:
        world.engine.deposit_collateral("bob", "WETH", ETHER)
    except EngineError as e:
        print(f"Refused: {type(e).__name__}")

    print(f"Bob's recorded WETH: {fmt(world.engine.collateral_balance('bob', 'WETH'))}")
    print(f"Event log grew by:   {len(world.engine.event_log) - events_before}")
    return world


# ============================================================================
# PHASE 3: LIQUIDATION
# ============================================================================

def step_06_crash(world: World) -> World:
    step_header(6, "Price Crash",
        f"WETH falls from ${CONFIG.weth_price:,} to ${CONFIG.crash_price:,}.")

    world.engine.advance_by(timedelta(minutes=5))
    now = world.engine.current_time
    world.feeds["WETH"].update_price(CONFIG.crash_price * FEED_UNIT, now)
    world.feeds["WBTC"].update_price(CONFIG.wbtc_price * FEED_UNIT, now)

    show_account(world, "alice")
    print("\nAlice is below 1.0 and can be liquidated.")
    return world


def step_07_liquidate(world: World) -> World:
    step_header(7, "Liquidation",
        "A third party repays part of Alice's debt and takes her collateral plus a bonus.")

    world.dsc.approve("liquidator", ENGINE_WALLET, CONFIG.cover * ETHER)
    print(f">>> engine.liquidate('liquidator', 'WETH', 'alice', {CONFIG.cover:,} DSC)")
    world.engine.liquidate("liquidator", "WETH", "alice", CONFIG.cover * ETHER)

    section_header("After")
    show_account(world, "alice")
    seized = world.weth.balance_of("liquidator")
    print(f"\nLiquidator received {fmt(seized)} WETH "
          f"(${fmt(world.engine.usd_value('WETH', seized))}) for {CONFIG.cover:,} DSC")
    return world


def step_08_invariants(world: World) -> World:
    step_header(8, "Invariants",
        "Debt token supply always equals recorded debt.")

    report = world.engine.verify_invariants()
    print(f"Total debt:       {fmt(report['total_debt'])}")
    print(f"DSC supply:       {fmt(report['debt_supply'])}")
    print(f"Pooled value:     ${fmt(report['collateral_value'])}")
    print(f"Valid:            {report['valid']}")
    for d in report['discrepancies']:
        print(f"  ! {d}")
    return world


# ============================================================================
# PHASE 4: ORACLES
# ============================================================================

def step_09_stale_feed(world: World) -> World:
    step_header(9, "Stale Feeds",
        "If a feed stops updating, every valuation fails until it resumes.")

    world.engine.advance_by(world.engine.oracle_timeout + timedelta(seconds=1))
    print(f"Clock advanced to {world.engine.current_time}; feeds last updated 3h+ ago")
    try:
        world.engine.health_factor("alice")
    except StalePrice as e:
        print(f"Refused: {e}")
    return world


# ============================================================================
# MAIN
# ============================================================================

def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       COLLATERALIZED-DEBT ENGINE - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    world = step_01_setup()
    for step in (step_02_fund_users, step_03_open_position, step_04_rejected_mint,
                 step_05_atomicity, step_06_crash, step_07_liquidate,
                 step_08_invariants, step_09_stale_feed):
        wait_for_enter()
        world = step(world)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See stablecoin/engine.py for the session and liquidation logic
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
