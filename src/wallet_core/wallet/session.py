"""Per-user wallet session: the public surface of the wallet core.

State machine::

    uninitialized -> initialized -> accounts_derived -> ready

Balance, transfer and history calls are only valid in ``ready``. Sends on
the same account are serialized with an ``asyncio.Lock`` so that two
concurrent sends can never be given the same nonce.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Protocol

import httpx

from wallet_core.config import WalletCoreConfig, list_configured_chains, resolve_chain
from wallet_core.errors import (
    InsufficientFundsError,
    NotInitializedError,
    ValidationError,
    WalletError,
)
from wallet_core.storage.database import Database
from wallet_core.wallet.broadcaster import Broadcaster
from wallet_core.wallet.builder import TransactionBuilder, checksum_address, encode_balance_of
from wallet_core.wallet.chains import Chain, Token
from wallet_core.wallet.contacts import ContactBook
from wallet_core.wallet.derivation import (
    DerivedAccount,
    KeyDerivation,
    generate_seed_phrase,
    normalize_seed_phrase,
)
from wallet_core.wallet.explorer import ExplorerClient, HistoryEntry
from wallet_core.wallet.rpc import RpcClient
from wallet_core.wallet.signer import Signer
from wallet_core.wallet.transactions import (
    BroadcastResult,
    PendingTransaction,
    RawTransaction,
    Swap,
    Transfer,
)
from wallet_core.wallet.units import (
    format_display,
    from_minor_units,
    parse_quantity,
    to_minor_units,
)
from wallet_core.wallet.userop import UserOperation, prepare_user_operation
from wallet_core.wallet.vault import SeedVault

logger = logging.getLogger("wallet_core.wallet.session")


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    ACCOUNTS_DERIVED = "accounts_derived"
    READY = "ready"


@dataclass
class InitializeResult:
    """``seed_phrase`` is set only when the session generated it."""

    accounts: list[DerivedAccount]
    seed_phrase: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"accounts": [a.to_dict() for a in self.accounts]}
        if self.seed_phrase is not None:
            data["seedPhrase"] = self.seed_phrase
        return data


@dataclass
class Balance:
    chain: str
    address: str
    symbol: str
    value: int
    decimals: int
    error: str | None = None

    @property
    def balance(self) -> str:
        return from_minor_units(self.value, self.decimals)

    def to_dict(self) -> dict:
        return {
            "chain": self.chain,
            "address": self.address,
            "symbol": self.symbol,
            "balance": self.balance,
            "display": format_display(self.value, self.decimals),
            "raw": str(self.value),
            "error": self.error,
        }


@dataclass(frozen=True)
class SwapCall:
    """A contract call produced by a :class:`SwapProvider` for a swap."""

    to: str
    data: str
    value: int = 0


class SwapProvider(Protocol):
    """Route building for swaps; DEX protocol logic lives outside the core."""

    async def quote(self, swap: Swap, sender: str, chain: Chain) -> dict: ...

    async def build(self, swap: Swap, sender: str, chain: Chain) -> SwapCall: ...


_ACCOUNT_PREFIX = "account:"


@dataclass
class _AccountState:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_nonce: int | None = None


class WalletSession:
    """Orchestrates vault, derivation, builder, signer and broadcaster.

    Parameters
    ----------
    db:
        Connected wallet database (seed record, settings, contacts).
    config:
        Wallet configuration; defaults are used when omitted.
    http_client:
        Optional shared ``httpx.AsyncClient`` for RPC and explorer calls.
    swap_provider:
        Optional :class:`SwapProvider` used when approving queued swaps.
    owns_db:
        Close ``db`` on :meth:`close`.
    """

    def __init__(
        self,
        db: Database,
        config: WalletCoreConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        derivation: KeyDerivation | None = None,
        swap_provider: SwapProvider | None = None,
        owns_db: bool = False,
    ) -> None:
        self.db = db
        self.config = config or WalletCoreConfig()
        self.vault = SeedVault(db)
        self.contacts = ContactBook(db)
        self.derivation = derivation or KeyDerivation()
        self.signer = Signer(self.derivation)
        self.swap_provider = swap_provider
        self.state = SessionState.UNINITIALIZED
        self.account_index = 0
        self.accounts: dict[str, DerivedAccount] = {}
        self.last_active = time.monotonic()

        self._http = http_client
        self._owns_db = owns_db
        self._pending_seed: str | None = None
        self._rpc: dict[str, RpcClient] = {}
        self._explorers: dict[str, ExplorerClient] = {}
        self._account_state: dict[tuple[str, str], _AccountState] = {}
        self._pending: dict[str, PendingTransaction] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        self.last_active = time.monotonic()

    def _require(self, operation: str, *states: SessionState) -> None:
        self.touch()
        if self.state not in states:
            raise NotInitializedError(operation, self.state.value)

    def _require_ready(self, operation: str) -> None:
        self._require(operation, SessionState.READY)

    def _chain(self, name: str | None) -> Chain:
        return resolve_chain(self.config, name or self.config.default_chain)

    def _token(self, chain: Chain, token: str | None) -> Token | None:
        try:
            return chain.find_token(token)
        except KeyError as exc:
            raise ValidationError(str(exc.args[0])) from exc

    def _rpc_for(self, chain: Chain) -> RpcClient:
        client = self._rpc.get(chain.name)
        if client is None:
            client = RpcClient(
                chain.rpc_url,
                timeout=self.config.rpc.timeout_seconds,
                retries=self.config.rpc.transport_retries,
                client=self._http,
            )
            self._rpc[chain.name] = client
        return client

    def _explorer_for(self, chain: Chain) -> ExplorerClient:
        client = self._explorers.get(chain.name)
        if client is None:
            client = ExplorerClient(
                chain.explorer_api_url,
                self.config.explorer.api_key,
                timeout=self.config.rpc.timeout_seconds,
                client=self._http,
            )
            self._explorers[chain.name] = client
        return client

    def _account(self, chain: Chain) -> DerivedAccount:
        account = self.accounts.get(chain.name)
        if account is not None:
            return account
        if not self.accounts:
            raise NotInitializedError(f"use chain '{chain.name}'", self.state.value)
        # Every supported chain is EVM (coin type 60): same key, same address.
        template = next(iter(self.accounts.values()))
        account = DerivedAccount(
            chain=chain.name,
            index=template.index,
            address=template.address,
            strategy=template.strategy,
            path=template.path,
        )
        self.accounts[chain.name] = account
        return account

    def _state_for(self, chain: Chain, address: str) -> _AccountState:
        key = (chain.name, address.lower())
        state = self._account_state.get(key)
        if state is None:
            state = _AccountState()
            self._account_state[key] = state
        return state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, seed_phrase: str | None = None, *, pin: str | None = None) -> InitializeResult:
        """Adopt (or generate) a seed phrase and derive accounts at index 0.

        With ``pin`` the seed is encrypted into the vault immediately;
        without it the seed is held until :meth:`secure` is called.
        """
        self.touch()
        generated = seed_phrase is None
        phrase = generate_seed_phrase() if generated else normalize_seed_phrase(seed_phrase)

        self.accounts = {}
        self._account_state = {}
        self._pending = {}
        if pin is not None:
            await self.vault.store_seed(phrase, pin)
            self._pending_seed = None
        else:
            self._pending_seed = phrase
        await self.db.delete_settings(_ACCOUNT_PREFIX)
        self.state = SessionState.INITIALIZED
        logger.info(f"Wallet initialized ({'generated' if generated else 'imported'} seed)")

        accounts = await self._derive(phrase, 0)
        return InitializeResult(accounts=accounts, seed_phrase=phrase if generated else None)

    async def secure(self, pin: str) -> None:
        """Encrypt the seed held since :meth:`initialize` and drop it."""
        self.touch()
        if self._pending_seed is None:
            raise NotInitializedError("secure the seed", "no unsecured seed")
        await self.vault.store_seed(self._pending_seed, pin)
        self._pending_seed = None

    async def resume(self) -> SessionState:
        """Pick up an existing vault record without a PIN.

        Accounts recorded on a previous derivation are restored, so the
        session can reach ``ready`` without decrypting the seed.
        """
        self.touch()
        if self.state is not SessionState.UNINITIALIZED:
            return self.state
        if not await self.vault.has_seed():
            return self.state
        self.state = SessionState.INITIALIZED

        stored = await self.db.settings_with_prefix(_ACCOUNT_PREFIX)
        for value in stored.values():
            data = json.loads(value)
            account = DerivedAccount(**data)
            self.accounts[account.chain] = account
            self.account_index = account.index
        if self.accounts:
            self.state = SessionState.ACCOUNTS_DERIVED
            if all(self._chain(c).name in self.accounts for c in self.config.required_chains):
                self.state = SessionState.READY
        logger.info(f"Session resumed in state '{self.state.value}'")
        return self.state

    async def derive_accounts(self, index: int = 0, *, pin: str | None = None) -> list[DerivedAccount]:
        """Derive the account at ``index`` on every required chain."""
        self._require(
            "derive accounts",
            SessionState.INITIALIZED,
            SessionState.ACCOUNTS_DERIVED,
            SessionState.READY,
        )
        if self._pending_seed is not None:
            return await self._derive(self._pending_seed, index)
        if pin is None:
            raise ValidationError("PIN is required to derive accounts")
        seed_phrase = await self.vault.retrieve_seed(pin)
        try:
            return await self._derive(seed_phrase, index)
        finally:
            del seed_phrase

    async def _derive(self, seed_phrase: str, index: int) -> list[DerivedAccount]:
        chains = [self._chain(name) for name in self.config.required_chains]
        derived: list[DerivedAccount] = []
        for chain in chains:
            expected = None
            previous = self.accounts.get(chain.name)
            if previous is not None and previous.index == index:
                expected = previous.address
            account = await asyncio.to_thread(
                self.derivation.derive_account, seed_phrase, chain.name, index, expected
            )
            if previous is not None and previous.index == index:
                account.balance = previous.balance
            self.accounts[chain.name] = account
            await self.db.set_setting(
                _ACCOUNT_PREFIX + chain.name, json.dumps(account.to_dict())
            )
            derived.append(account)
            self.state = SessionState.ACCOUNTS_DERIVED
            logger.info(f"Derived {chain.name} account {index} via '{account.strategy}'")

        # Accounts from another index must not linger next to the new ones.
        for name in list(self.accounts):
            if self.accounts[name].index != index:
                del self.accounts[name]
        self.account_index = index
        self.state = SessionState.READY
        return derived

    async def reset(self) -> None:
        """Erase the vault and forget every account and pending item."""
        await self.vault.clear()
        self.accounts = {}
        self._account_state = {}
        self._pending = {}
        self._pending_seed = None
        self.state = SessionState.UNINITIALIZED
        logger.info("Wallet session reset")

    async def close(self) -> None:
        for client in self._rpc.values():
            await client.aclose()
        for explorer in self._explorers.values():
            await explorer.aclose()
        self._rpc = {}
        self._explorers = {}
        self._pending_seed = None
        self._pending = {}
        if self._owns_db and self.db.connected:
            await self.db.close()

    def account(self, chain: str | None = None) -> DerivedAccount:
        """The current account on ``chain``."""
        self._require_ready("read the account")
        return self._account(self._chain(chain))

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def fetch_balance(self, chain: str | None = None) -> Balance:
        """Native balance by direct ``eth_getBalance``.

        A failing node degrades to the last known balance with ``error``
        set instead of raising.
        """
        self._require_ready("fetch a balance")
        ch = self._chain(chain)
        account = self._account(ch)
        try:
            value = await self._rpc_for(ch).get_balance(account.address)
        except WalletError as exc:
            logger.warning(f"Balance fetch failed on {ch.name}: {exc}")
            cached = to_minor_units(account.balance or "0", ch.decimals)
            return Balance(ch.name, account.address, ch.native_symbol, cached, ch.decimals, str(exc))
        account.balance = from_minor_units(value, ch.decimals)
        return Balance(ch.name, account.address, ch.native_symbol, value, ch.decimals)

    async def fetch_balances(self) -> dict[str, Balance]:
        """Native balance on every configured chain, fetched concurrently.

        A chain that fails reports its error in its own entry and does not
        affect the others.
        """
        self._require_ready("fetch balances")
        names = list_configured_chains(self.config)

        async def one(name: str) -> Balance:
            try:
                return await self.fetch_balance(name)
            except ValidationError as exc:
                logger.warning(f"Skipping balance on {name}: {exc}")
                return Balance(name, "", "", 0, 18, str(exc))

        balances = await asyncio.gather(*(one(name) for name in names))
        return dict(zip(names, balances))

    async def fetch_token_balance(
        self,
        token: str,
        chain: str | None = None,
        holder: str | None = None,
    ) -> Balance:
        """ERC-20 ``balanceOf``; an empty ``"0x"`` result is a zero balance."""
        self._require_ready("fetch a token balance")
        ch = self._chain(chain)
        tok = self._token(ch, token)
        if tok is None:
            return await self.fetch_balance(ch.name)
        address = checksum_address(holder) if holder else self._account(ch).address
        try:
            result = await self._rpc_for(ch).call_contract(
                checksum_address(tok.address), encode_balance_of(address)
            )
            value = parse_quantity(result)
        except WalletError as exc:
            logger.warning(f"Token balance fetch failed for {tok.symbol} on {ch.name}: {exc}")
            return Balance(ch.name, address, tok.symbol, 0, tok.decimals, str(exc))
        return Balance(ch.name, address, tok.symbol, value, tok.decimals)

    def list_tokens(self, chain: str | None = None) -> list[dict]:
        """The native asset followed by the configured ERC-20 tokens."""
        ch = self._chain(chain)
        tokens = [
            {"symbol": ch.native_symbol, "address": None, "decimals": ch.decimals, "native": True}
        ]
        tokens.extend(
            {"symbol": t.symbol, "address": t.address, "decimals": t.decimals, "native": False}
            for t in ch.tokens
        )
        return tokens

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def _min_nonce(self, state: _AccountState) -> int:
        return 0 if state.last_nonce is None else state.last_nonce + 1

    async def prepare_transfer(
        self,
        to: str,
        amount: str,
        token: str | None = None,
        chain: str | None = None,
    ) -> RawTransaction:
        """Build (but do not sign) a transfer from the session account."""
        self._require_ready("prepare a transfer")
        ch = self._chain(chain)
        account = self._account(ch)
        builder = TransactionBuilder(self._rpc_for(ch), ch)
        state = self._state_for(ch, account.address)
        return await builder.build(
            account.address,
            to,
            amount,
            token=self._token(ch, token),
            min_nonce=self._min_nonce(state),
        )

    async def _check_funds(
        self,
        ch: Chain,
        tx: RawTransaction,
        token: Token | None,
    ) -> None:
        rpc = self._rpc_for(ch)
        native = await rpc.get_balance(tx.sender)
        required = tx.value + tx.max_fee
        if native < required:
            raise InsufficientFundsError(required, native, ch.native_symbol)
        if token is not None:
            amount = self._transfer_amount(tx)
            result = await rpc.call_contract(tx.to, encode_balance_of(tx.sender))
            held = parse_quantity(result)
            if held < amount:
                raise InsufficientFundsError(amount, held, token.symbol)

    @staticmethod
    def _transfer_amount(tx: RawTransaction) -> int:
        # transfer(address,uint256): 4-byte selector, 32-byte address, 32-byte amount.
        return int(tx.data[-64:], 16)

    async def _sign_and_send(
        self,
        ch: Chain,
        account: DerivedAccount,
        pin: str,
        build: Callable[[int], Awaitable[RawTransaction]],
        token: Token | None = None,
    ) -> BroadcastResult:
        rpc = self._rpc_for(ch)
        seed_phrase = await self.vault.retrieve_seed(pin)
        state = self._state_for(ch, account.address)
        try:
            async with state.lock:
                tx = await build(self._min_nonce(state))
                await self._check_funds(ch, tx, token)
                signed = await self.signer.sign(tx, seed_phrase, account.index)
                # Consumed from here on, even if the node rejects it.
                state.last_nonce = tx.nonce
                result = await Broadcaster(rpc, self.config.rpc.transport_retries).broadcast(signed)
        finally:
            del seed_phrase
        return result

    async def send_transfer(
        self,
        to: str,
        amount: str,
        token: str | None = None,
        chain: str | None = None,
        *,
        pin: str,
    ) -> BroadcastResult:
        """Build, check funds, sign and broadcast a transfer.

        The seed is decrypted with ``pin`` for this call only.
        """
        self._require_ready("send a transfer")
        ch = self._chain(chain)
        account = self._account(ch)
        tok = self._token(ch, token)
        builder = TransactionBuilder(self._rpc_for(ch), ch)

        async def build(min_nonce: int) -> RawTransaction:
            return await builder.build(account.address, to, amount, token=tok, min_nonce=min_nonce)

        result = await self._sign_and_send(ch, account, pin, build, tok)
        contact = await self.contacts.get_by_address(to)
        if contact is not None:
            await self.contacts.touch(contact.id)
        return result

    # ------------------------------------------------------------------
    # Pending queue
    # ------------------------------------------------------------------

    def queue_transaction(self, pending: PendingTransaction) -> str:
        """Hold ``pending`` for later approval; returns its id."""
        self.touch()
        if isinstance(pending, Transfer):
            checksum_address(pending.to_address)
            if to_minor_units(pending.amount, 36) <= 0:
                raise ValidationError("Amount must be greater than zero")
        elif isinstance(pending, Swap):
            if to_minor_units(pending.amount, 36) <= 0:
                raise ValidationError("Amount must be greater than zero")
            if not 0 <= pending.slippage <= 100:
                raise ValidationError("Slippage must be between 0 and 100 percent")
        else:
            raise ValidationError(f"Unsupported pending transaction {type(pending).__name__}")
        self._pending[pending.id] = pending
        logger.info(f"Queued {pending.kind} {pending.id}")
        return pending.id

    def list_pending(self) -> list[PendingTransaction]:
        return list(self._pending.values())

    def _take(self, pending_id: str) -> PendingTransaction:
        pending = self._pending.pop(pending_id, None)
        if pending is None:
            raise ValidationError(f"No pending transaction '{pending_id}'")
        return pending

    async def approve(self, pending_id: str, pin: str) -> BroadcastResult:
        """Sign and broadcast a queued item. Each item is consumed once."""
        self._require_ready("approve a transaction")
        pending = self._pending.get(pending_id)
        if isinstance(pending, Swap) and self.swap_provider is None:
            raise ValidationError("No swap provider is configured")
        pending = self._take(pending_id)

        if isinstance(pending, Transfer):
            return await self.send_transfer(
                pending.to_address, pending.amount, pending.token, pending.chain, pin=pin
            )

        ch = self._chain(pending.chain)
        account = self._account(ch)
        call = await self.swap_provider.build(pending, account.address, ch)
        builder = TransactionBuilder(self._rpc_for(ch), ch)

        async def build(min_nonce: int) -> RawTransaction:
            return await builder.build_call(
                account.address, call.to, call.data, call.value, min_nonce=min_nonce
            )

        return await self._sign_and_send(ch, account, pin, build)

    async def get_swap_quote(self, swap: Swap) -> dict:
        """Ask the swap provider for a quote; nothing is queued or signed."""
        self._require_ready("quote a swap")
        if self.swap_provider is None:
            raise ValidationError("No swap provider is configured")
        if to_minor_units(swap.amount, 36) <= 0:
            raise ValidationError("Amount must be greater than zero")
        ch = self._chain(swap.chain)
        return await self.swap_provider.quote(swap, self._account(ch).address, ch)

    def reject(self, pending_id: str) -> PendingTransaction:
        self.touch()
        pending = self._take(pending_id)
        logger.info(f"Rejected {pending.kind} {pending.id}")
        return pending

    # ------------------------------------------------------------------
    # History, account abstraction, summary
    # ------------------------------------------------------------------

    async def get_history(
        self,
        address: str | None = None,
        limit: int | None = None,
        chain: str | None = None,
    ) -> list[HistoryEntry]:
        self.touch()
        ch = self._chain(chain)
        if address is None:
            self._require_ready("fetch history")
            address = self._account(ch).address
        else:
            address = checksum_address(address)
        if limit is None:
            limit = self.config.explorer.page_size
        return await self._explorer_for(ch).get_transactions(address, limit, ch.decimals)

    async def prepare_user_operation(
        self,
        to: str,
        value: str = "0",
        data: str = "0x",
        chain: str | None = None,
    ) -> UserOperation:
        """Unsigned ERC-4337 operation executing ``to`` from the session account."""
        self._require_ready("prepare a user operation")
        ch = self._chain(chain)
        account = self._account(ch)
        return await prepare_user_operation(
            self._rpc_for(ch),
            account.address,
            to,
            to_minor_units(value, ch.decimals),
            data,
            entry_point=ch.entry_point,
        )

    def summary(self) -> dict:
        return {
            "state": self.state.value,
            "accountIndex": self.account_index,
            "defaultChain": self.config.default_chain,
            "accounts": [a.to_dict() for a in self.accounts.values()],
            "pending": len(self._pending),
            "seedSecured": self._pending_seed is None and self.state is not SessionState.UNINITIALIZED,
        }
