"""
stablecoin - Collateralized-Debt Engine

Users deposit approved collateral, mint a synthetic unit-of-account token
against it, and are liquidated when their health factor falls below 1.0.

Usage:
    from datetime import datetime
    from stablecoin import Engine, Token, TokenCustody, DebtToken, StaticPriceFeed

    now = datetime(2025, 1, 1)
    weth = Token("WETH", "Wrapped Ether")
    dsc = DebtToken()
    engine = Engine(
        "main",
        assets=["WETH"],
        price_sources=[StaticPriceFeed(2000 * 10**8, now)],
        custodies=[TokenCustody(weth)],
        debt_gate=dsc.grant_minter(),
        initial_time=now,
    )

    weth.mint_to("alice", 10 * 10**18)
    weth.approve("alice", "engine", 10 * 10**18)
    engine.deposit_and_mint("alice", "WETH", 10 * 10**18, 10_000 * 10**18)
    engine.health_factor("alice")   # 10**18
"""

# Core types
from .core import (
    PriceQuote,
    AccountInformation,
    EngineParameters,
    EngineEvent,
    EventType,
    PriceSource,
    TransferableBalance,
    DebtTokenGate,
    EngineError,
    ConfigurationError,
    LengthMismatch,
    DuplicateAsset,
    InputError,
    ZeroAmount,
    InvalidAmount,
    AssetNotAllowed,
    InsufficientBalance,
    InvariantError,
    HealthFactorBroken,
    HealthFactorOk,
    HealthFactorNotImproved,
    ExternalError,
    TransferFailed,
    MintFailed,
    OracleUnreachable,
    StalePrice,
    InvalidPrice,
    ReentrantCall,
    PRECISION,
    LIQUIDATION_THRESHOLD,
    LIQUIDATION_PRECISION,
    LIQUIDATION_BONUS,
    MIN_HEALTH_FACTOR,
    MAX_HEALTH_FACTOR,
    ORACLE_TIMEOUT,
    ENGINE_WALLET,
)

# Registry and oracle
from .registry import AssetDescriptor, AssetRegistry
from .oracle import OracleAdapter

# Health factor arithmetic
from .health import (
    calculate_health_factor,
    collateral_value,
    usd_value,
    token_amount_from_usd,
    liquidation_bonus,
    is_healthy,
)

# Engine
from .engine import Engine

# Reference collaborators
from .price_feeds import StaticPriceFeed, TimeSeriesPriceFeed, DEFAULT_FEED_DECIMALS
from .token import (
    Token,
    TokenCustody,
    DebtToken,
    MintAuthority,
    TokenError,
    Unauthorized,
    BurnAmountExceedsBalance,
    InvalidRecipient,
)

__all__ = [
    # Core
    'PriceQuote', 'AccountInformation', 'EngineParameters', 'EngineEvent', 'EventType',
    'PriceSource', 'TransferableBalance', 'DebtTokenGate',
    'EngineError', 'ConfigurationError', 'LengthMismatch', 'DuplicateAsset',
    'InputError', 'ZeroAmount', 'InvalidAmount', 'AssetNotAllowed', 'InsufficientBalance',
    'InvariantError', 'HealthFactorBroken', 'HealthFactorOk', 'HealthFactorNotImproved',
    'ExternalError', 'TransferFailed', 'MintFailed', 'OracleUnreachable', 'StalePrice',
    'InvalidPrice', 'ReentrantCall',
    'PRECISION', 'LIQUIDATION_THRESHOLD', 'LIQUIDATION_PRECISION', 'LIQUIDATION_BONUS',
    'MIN_HEALTH_FACTOR', 'MAX_HEALTH_FACTOR', 'ORACLE_TIMEOUT', 'ENGINE_WALLET',
    # Registry and oracle
    'AssetDescriptor', 'AssetRegistry', 'OracleAdapter',
    # Health
    'calculate_health_factor', 'collateral_value', 'usd_value', 'token_amount_from_usd',
    'liquidation_bonus', 'is_healthy',
    # Engine
    'Engine',
    # Collaborators
    'StaticPriceFeed', 'TimeSeriesPriceFeed', 'DEFAULT_FEED_DECIMALS',
    'Token', 'TokenCustody', 'DebtToken', 'MintAuthority',
    'TokenError', 'Unauthorized', 'BurnAmountExceedsBalance', 'InvalidRecipient',
]

__version__ = '1.0.0'
