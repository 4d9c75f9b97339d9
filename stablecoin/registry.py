"""
registry.py - Approved collateral assets

The registry is an arena of AssetDescriptor records built once when the
engine is constructed. It is never mutated afterwards, so it needs no
protection against concurrent writes.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Sequence, Tuple

from .core import (
    PriceSource, TransferableBalance,
    AssetNotAllowed, DuplicateAsset, LengthMismatch,
)


@dataclass(frozen=True, slots=True)
class AssetDescriptor:
    """
    One approved collateral asset.

    Attributes:
        symbol: Asset identifier (e.g., "WETH").
        price_source: The single price feed for this asset.
        custody: Transfer capability moving the asset in and out of the engine.
    """
    symbol: str
    price_source: PriceSource
    custody: TransferableBalance

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Asset symbol cannot be empty")


class AssetRegistry:
    """
    Immutable ordered set of approved collateral assets.

    Example:
        registry = AssetRegistry(
            ["WETH", "WBTC"],
            [weth_feed, wbtc_feed],
            [TokenCustody(weth), TokenCustody(wbtc)],
        )
        registry.is_approved("WETH")   # True
    """

    __slots__ = ('_descriptors', '_by_symbol')

    def __init__(
        self,
        assets: Sequence[str],
        price_sources: Sequence[PriceSource],
        custodies: Sequence[TransferableBalance],
    ):
        """
        Build the registry.

        Raises:
            LengthMismatch: If the three sequences differ in length.
            DuplicateAsset: If an asset symbol appears more than once.
        """
        if len(assets) != len(price_sources):
            raise LengthMismatch(
                f"{len(assets)} assets but {len(price_sources)} price sources"
            )
        if len(assets) != len(custodies):
            raise LengthMismatch(
                f"{len(assets)} assets but {len(custodies)} custodies"
            )

        descriptors = []
        by_symbol: Dict[str, AssetDescriptor] = {}
        for symbol, source, custody in zip(assets, price_sources, custodies):
            if symbol in by_symbol:
                raise DuplicateAsset(f"Asset {symbol} registered twice")
            descriptor = AssetDescriptor(symbol, source, custody)
            descriptors.append(descriptor)
            by_symbol[symbol] = descriptor

        self._descriptors: Tuple[AssetDescriptor, ...] = tuple(descriptors)
        self._by_symbol = by_symbol

    def is_approved(self, asset: str) -> bool:
        """True iff the asset has a (non-null) price source."""
        descriptor = self._by_symbol.get(asset)
        return descriptor is not None and descriptor.price_source is not None

    def get(self, asset: str) -> AssetDescriptor:
        """
        Return the descriptor for an approved asset.

        Raises:
            AssetNotAllowed: If the asset is not registered.
        """
        if not self.is_approved(asset):
            raise AssetNotAllowed(f"Asset {asset} is not allowed as collateral")
        return self._by_symbol[asset]

    def price_source(self, asset: str) -> Optional[PriceSource]:
        """Price source for an asset, or None if not registered."""
        descriptor = self._by_symbol.get(asset)
        return descriptor.price_source if descriptor else None

    def custody(self, asset: str) -> TransferableBalance:
        return self.get(asset).custody

    @property
    def symbols(self) -> Tuple[str, ...]:
        """Registered asset symbols in registration order."""
        return tuple(d.symbol for d in self._descriptors)

    def __iter__(self) -> Iterator[AssetDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, asset: object) -> bool:
        return asset in self._by_symbol

    def __repr__(self) -> str:
        return f"AssetRegistry({', '.join(self.symbols)})"
