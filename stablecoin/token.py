"""
token.py - Reference fungible tokens

In-memory implementations of the engine's external collaborators:

- Token: a transferable balance with approve/transfer/transfer_from semantics
- TokenCustody: adapts a Token to the TransferableBalance protocol, holding
  the engine's pooled collateral under one wallet
- DebtToken: the unit-of-account token; only the holder of its single
  MintAuthority can mint and burn
- MintAuthority: the capability handle implementing DebtTokenGate

Transfers that cannot be honoured (insufficient balance or allowance) return
False, like a token that reports failure instead of reverting. Authorization
failures raise.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, Optional

from .core import ENGINE_WALLET, InvalidAmount, ZeroAmount


class TokenError(Exception):
    """Base exception for token errors."""
    pass


class Unauthorized(TokenError):
    """Raised when minting or burning without the token's mint authority."""
    pass


class BurnAmountExceedsBalance(TokenError):
    """Raised when burning more than the authority holder owns."""
    pass


class InvalidRecipient(TokenError):
    """Raised when minting to an empty wallet id."""
    pass


def _check_quantity(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        raise InvalidAmount(f"token amount must be a non-negative int, got {amount!r}")


class Token:
    """
    Fungible token with balances and allowances keyed by wallet id.

    Example:
        weth = Token("WETH", "Wrapped Ether")
        weth.mint_to("alice", 10 * 10**18)
        weth.approve("alice", "engine", 10 * 10**18)
        weth.transfer_from("engine", "alice", "engine", 10 * 10**18)
    """

    def __init__(self, symbol: str, name: str, decimals: int = 18):
        self.symbol = symbol
        self.name = name
        self.decimals = decimals
        self._balances: Dict[str, int] = defaultdict(int)
        self._allowances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._total_supply = 0

    def balance_of(self, wallet: str) -> int:
        return self._balances.get(wallet, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances[owner][spender]

    def total_supply(self) -> int:
        return self._total_supply

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        """Allow spender to move up to amount of owner's tokens."""
        _check_quantity(amount)
        self._allowances[owner][spender] = amount
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        """Move amount from sender to `to`. Returns False if sender is short."""
        _check_quantity(amount)
        if self._balances[sender] < amount:
            return False
        self._balances[sender] -= amount
        self._balances[to] += amount
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        """
        Move amount from owner to `to` on behalf of spender.

        Returns False without side effects when the allowance or balance is short.
        """
        _check_quantity(amount)
        allowed = self._allowances[owner][spender]
        if allowed < amount or self._balances[owner] < amount:
            return False
        self._allowances[owner][spender] = allowed - amount
        self._balances[owner] -= amount
        self._balances[to] += amount
        return True

    def mint_to(self, wallet: str, amount: int) -> None:
        """Create tokens out of thin air (faucet for collateral test assets)."""
        self._mint(wallet, amount)

    def _mint(self, wallet: str, amount: int) -> None:
        _check_quantity(amount)
        self._balances[wallet] += amount
        self._total_supply += amount

    def _burn_from(self, wallet: str, amount: int) -> None:
        self._balances[wallet] -= amount
        self._total_supply -= amount

    def __repr__(self):
        return f"{type(self).__name__}({self.symbol}, supply={self._total_supply})"


class TokenCustody:
    """
    TransferableBalance backed by a Token, with collateral pooled under `holder`.

    transfer_in pulls via transfer_from (the owner must approve `holder`);
    transfer_out sends from the pool.
    """

    def __init__(self, token: Token, holder: str = ENGINE_WALLET):
        self.token = token
        self.holder = holder

    def transfer_in(self, owner: str, amount: int) -> bool:
        return self.token.transfer_from(self.holder, owner, self.holder, amount)

    def transfer_out(self, to: str, amount: int) -> bool:
        return self.token.transfer(self.holder, to, amount)

    def pooled(self) -> int:
        """Quantity currently held in custody."""
        return self.token.balance_of(self.holder)

    def __repr__(self):
        return f"TokenCustody({self.token.symbol}, holder={self.holder})"


class DebtToken(Token):
    """
    The synthetic unit-of-account token.

    Minting and burning need the MintAuthority returned by grant_minter(),
    which can be called exactly once. Whoever holds the authority is the sole
    issuer; everyone else can only transfer.
    """

    def __init__(self, symbol: str = "DSC", name: str = "Decentralized Stable Coin"):
        super().__init__(symbol, name, decimals=18)
        self._authority: Optional[MintAuthority] = None

    def grant_minter(self, holder: str = ENGINE_WALLET) -> MintAuthority:
        """
        Issue the single mint authority to `holder`.

        Raises:
            Unauthorized: If the authority was already granted.
        """
        if self._authority is not None:
            raise Unauthorized(f"{self.symbol} mint authority already granted")
        self._authority = MintAuthority(self, holder)
        return self._authority

    def _require_authority(self, authority: MintAuthority) -> None:
        if self._authority is None or authority is not self._authority:
            raise Unauthorized(f"caller is not the {self.symbol} minter")

    def mint(self, authority: MintAuthority, to: str, amount: int) -> bool:
        """
        Mint amount to `to`.

        Raises:
            Unauthorized: If authority is not the granted one.
            InvalidRecipient: If `to` is empty.
            ZeroAmount: If amount is zero.
        """
        self._require_authority(authority)
        if not to or not to.strip():
            raise InvalidRecipient("cannot mint to an empty wallet")
        _check_quantity(amount)
        if amount == 0:
            raise ZeroAmount("mint amount must be more than zero")
        self._mint(to, amount)
        return True

    def mint_to(self, wallet: str, amount: int) -> None:
        """Faucet minting is disabled; supply must track engine debt exactly."""
        raise Unauthorized(f"{self.symbol} can only be minted through its mint authority")

    def burn(self, authority: MintAuthority, amount: int) -> None:
        """
        Destroy amount of the authority holder's own balance.

        Raises:
            Unauthorized: If authority is not the granted one.
            ZeroAmount: If amount is zero.
            BurnAmountExceedsBalance: If the holder owns less than amount.
        """
        self._require_authority(authority)
        _check_quantity(amount)
        if amount == 0:
            raise ZeroAmount("burn amount must be more than zero")
        holder = authority.holder
        if self.balance_of(holder) < amount:
            raise BurnAmountExceedsBalance(
                f"burn {amount} exceeds {holder} balance {self.balance_of(holder)}"
            )
        self._burn_from(holder, amount)


class MintAuthority:
    """
    Capability handle over a DebtToken, implementing DebtTokenGate.

    Created only by DebtToken.grant_minter(); injected into the engine.
    """

    __slots__ = ('token', 'holder')

    def __init__(self, token: DebtToken, holder: str):
        self.token = token
        self.holder = holder

    def mint(self, to: str, amount: int) -> bool:
        return self.token.mint(self, to, amount)

    def burn(self, amount: int) -> None:
        self.token.burn(self, amount)

    def pull(self, owner: str, amount: int) -> bool:
        """transfer_from owner to the holder (owner must approve the holder)."""
        return self.token.transfer_from(self.holder, owner, self.holder, amount)

    def push(self, to: str, amount: int) -> bool:
        return self.token.transfer(self.holder, to, amount)

    def total_supply(self) -> int:
        return self.token.total_supply()

    def __repr__(self):
        return f"MintAuthority({self.token.symbol}, holder={self.holder})"
