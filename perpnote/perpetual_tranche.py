"""
perpetual_tranche.py - The perpetual note engine

A perpetual note is a fungible token backed by a rotating reserve of bond
tranches. Holders mint notes by depositing tranches of the current deposit
bond, redeem notes for reserve assets in queue order, and rolling holders
swap fresh tranches for ageing ones so the reserve never matures as a whole.

Value of a reserve asset:

    value = std_amount * yield * price

where std_amount is the tranche amount (for settled collateral, the amount
converted through mature_tranche_balance), yield is the tranche's frozen
applied yield (1 for collateral) and price comes from the pricing strategy.

Everything that must roll back with a failed operation is kept in the note
unit's state:

    deposit_bond            current bond accepted for mints and rollovers
    queue                   redemption queue (oldest accepted tranche first)
    reserves                reserve assets with non-zero balance (collateral first)
    applied_yields          yield frozen per tranche on first acceptance
    mature_tranche_balance  yield-adjusted amount of tranches settled into collateral
    minted_per_tranche      notes minted against each tranche (minting limits)

Operations:
    update_state()                   explicit advance: deposit bond, eviction, maturity settlement
    mint(caller, tranche, amt)       tranche -> notes
    redeem(caller, token, note_amt)  notes -> reserve asset (queue head first)
    rollover(caller, in, out, amt)   fresh tranche -> ageing reserve asset
    burn(caller, note_amt)           destroy notes without redemption
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
import copy

from .core import (
    Move, UnitStateChange, TransactionOrigin, OriginType, Unit, build_transaction,
    SYSTEM_WALLET, UNIT_TYPE_PERP_NOTE, TOKEN_DECIMALS, ZERO, ONE,
    InsufficientFunds, InvalidConfig,
    UnacceptableDeposit, UnacceptableMintAmt, ExceededMaxSupply, ExceededMaxMintPerTranche,
    UnacceptableRedemption, UnacceptableRedemptionTranche,
    UnacceptableRollover, UnacceptableRolloverAmt,
    _freeze_state, to_decimal, floor_to, ceil_to,
)
from .access import AccessControl, OneTimeInit, PauseControl
from .events import (
    make_event, RESERVE_SYNCED, TRANCHE_ENQUEUED, TRANCHE_DEQUEUED, DEPOSIT_BOND_UPDATED,
    YIELD_APPLIED, MATURE_TRANCHE_SETTLED, CONFIG_UPDATED, OWNERSHIP_TRANSFERRED, PAUSED, UNPAUSED,
)
from .fee_policy import FeePolicy, SubscriptionParams
from .redemption_queue import RedemptionQueue
from .units.bond import (
    bond_of, is_tranche, load_bond, mature, compute_redeem_mature,
)


# ============================================================================
# CONFIGURATION AND RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class NoteConfig:
    """
    Note engine parameters, snapshotted at the start of every operation.

    min/max_tranche_maturity_sec bound the time to maturity of bonds the
    reserve accepts; queued tranches are evicted once below the minimum.
    Wallets in fee_exempt pay no mint or burn fee.
    """
    min_tranche_maturity_sec: int
    max_tranche_maturity_sec: int
    fee_collector: str
    max_supply: Optional[Decimal] = None
    max_mint_amt_per_tranche: Optional[Decimal] = None
    fee_exempt: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if self.min_tranche_maturity_sec < 0:
            raise InvalidConfig("min_tranche_maturity_sec must be non-negative")
        if self.min_tranche_maturity_sec > self.max_tranche_maturity_sec:
            raise InvalidConfig(
                f"min_tranche_maturity_sec {self.min_tranche_maturity_sec} > "
                f"max_tranche_maturity_sec {self.max_tranche_maturity_sec}"
            )
        if not self.fee_collector:
            raise InvalidConfig("fee_collector cannot be empty")
        if self.max_supply is not None and not isinstance(self.max_supply, Decimal):
            object.__setattr__(self, 'max_supply', to_decimal(self.max_supply))
        if self.max_mint_amt_per_tranche is not None and not isinstance(self.max_mint_amt_per_tranche, Decimal):
            object.__setattr__(self, 'max_mint_amt_per_tranche', to_decimal(self.max_mint_amt_per_tranche))
        object.__setattr__(self, 'fee_exempt', frozenset(self.fee_exempt))


@dataclass(frozen=True, slots=True)
class MintResult:
    tranche: str
    tranche_amt: Decimal
    mint_amt: Decimal
    fee_amt: Decimal  # signed; negative is a rebate from the fee collector

    @property
    def received(self) -> Decimal:
        """Notes credited to the caller."""
        return self.mint_amt - self.fee_amt


@dataclass(frozen=True, slots=True)
class RedemptionResult:
    token: str
    token_amt: Decimal
    burn_amt: Decimal
    fee_amt: Decimal  # signed; negative is a rebate from the fee collector
    leftover_amt: Decimal

    @property
    def note_cost(self) -> Decimal:
        """Notes leaving the caller's wallet."""
        return self.burn_amt + self.fee_amt


@dataclass(frozen=True, slots=True)
class RolloverData:
    tranche_in: str
    token_out: str
    tranche_in_amt: Decimal
    token_out_amt: Decimal
    perp_rollover_amt: Decimal  # value of tranche_in_amt, in notes
    fee_perc: Decimal


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_mint_amt(tranche_amt: Decimal, yield_: Decimal, price: Decimal) -> Decimal:
    return floor_to(tranche_amt * yield_ * price)


def calculate_redemption_amts(
    note_amt: Decimal,
    unit_value: Decimal,
    reserve_balance: Decimal,
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    (covered std amount, notes burned, notes left over) for a redemption.

    unit_value is yield * price of one std unit. When the reserve cannot cover
    the full request, only the covered part is burned and the remainder is
    rounded up so the reserve never pays more than it received.
    """
    max_amt = floor_to(note_amt / unit_value)
    if max_amt <= reserve_balance:
        return max_amt, note_amt, ZERO
    leftover = ceil_to((max_amt - reserve_balance) * unit_value)
    return reserve_balance, note_amt - leftover, leftover


def calculate_rollover_amts(
    tranche_in_amt: Decimal,
    value_in: Decimal,
    value_out: Decimal,
    fee_perc: Decimal,
    max_out: Decimal,
) -> Tuple[Decimal, Decimal]:
    """
    (tranche in, std amount out) for a rollover.

    value_in / value_out are yield * price per std unit on each side. A
    positive fee shrinks what comes out, a negative fee grows it. When the
    out side is capped by max_out the in side is recomputed, rounding up.
    """
    if value_out <= ZERO:
        return ZERO, ZERO
    net = ONE - fee_perc
    out = floor_to(tranche_in_amt * value_in * net / value_out)
    if out <= max_out:
        return tranche_in_amt, out
    out = max_out
    needed = ceil_to(out * value_out / (value_in * net))
    return min(needed, tranche_in_amt), out


# ============================================================================
# ENGINE
# ============================================================================

class PerpetualTranche:
    """
    Note engine over a Ledger.

    Example:
        perp = PerpetualTranche(ledger, "SPOT", "SPOT note", owner="gov")
        perp.init("gov", collateral="AMPL", bond_issuer=issuer, fee_policy=policy,
                  pricing_strategy=CDRPricingStrategy(), yield_strategy=yields,
                  config=NoteConfig(0, 90 * 86400, fee_collector="treasury"))
        perp.mint("alice", "ISSUER-B0-T0", Decimal("100"))
    """

    def __init__(self, ledger, symbol: str, name: str, owner: str):
        self.ledger = ledger
        self.symbol = symbol
        self.name = name
        self.reserve_wallet = f"{symbol}:reserve"
        self.access = AccessControl(owner)
        self.initializer = OneTimeInit()
        self.pause = PauseControl()
        self.config: Optional[NoteConfig] = None
        self.collateral: Optional[str] = None
        self.bond_issuer = None
        self.fee_policy: Optional[FeePolicy] = None
        self.pricing_strategy = None
        self.yield_strategy = None
        self.vault = None

    def init(
        self,
        caller: str,
        collateral: str,
        bond_issuer,
        fee_policy: FeePolicy,
        pricing_strategy,
        yield_strategy,
        config: NoteConfig,
    ) -> None:
        """Wire collaborators and register the note unit. Runs once."""
        self.access.require_owner(caller)
        self.initializer.initialize()
        self.collateral = collateral
        self.bond_issuer = bond_issuer
        self.fee_policy = fee_policy
        self.pricing_strategy = pricing_strategy
        self.yield_strategy = yield_strategy
        self.config = config

        self.ledger.ensure_wallet(self.reserve_wallet)
        self.ledger.ensure_wallet(config.fee_collector)
        self.ledger.register_unit(Unit(
            symbol=self.symbol,
            name=self.name,
            unit_type=UNIT_TYPE_PERP_NOTE,
            decimal_places=TOKEN_DECIMALS,
            _frozen_state=_freeze_state({
                'collateral': collateral,
                'reserve_wallet': self.reserve_wallet,
                'deposit_bond': None,
                'queue': [],
                'reserves': [],
                'applied_yields': {},
                'mature_tranche_balance': ZERO,
                'minted_per_tranche': {},
            }),
        ))

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _require_active(self) -> None:
        self.initializer.require_initialized()
        self.pause.require_not_paused()

    def _state(self) -> Dict[str, Any]:
        return self.ledger.get_unit_state(self.symbol)

    def _origin(self, event: str) -> TransactionOrigin:
        return TransactionOrigin(OriginType.CONTRACT, self.ledger.next_nonce(self.symbol), self.symbol, event)

    def _transfer(self, moves: List[Move], event: str) -> None:
        if moves:
            self.ledger.execute_or_raise(build_transaction(self.ledger, moves, origin=self._origin(event)))

    def _save(self, old_state: Dict[str, Any], new_state: Dict[str, Any], event: str) -> None:
        if new_state != old_state:
            self.ledger.execute_or_raise(build_transaction(
                self.ledger, [], [UnitStateChange(self.symbol, old_state, new_state)],
                origin=self._origin(event),
            ))

    def _emit(self, action: str, symbol: str = "", **params) -> None:
        self.ledger.emit(make_event(self.ledger.current_time, self.symbol, action, symbol, **params))

    def _is_collateral(self, token: str) -> bool:
        return token == self.collateral

    def _reserve_balance(self, token: str) -> Decimal:
        return self.ledger.get_balance(self.reserve_wallet, token)

    def _time_to_maturity(self, tranche: str) -> int:
        return load_bond(self.ledger, bond_of(self.ledger, tranche)).time_to_maturity(self.ledger.current_time)

    def _is_acceptable_bond(self, cfg: NoteConfig, bond: str) -> bool:
        info = load_bond(self.ledger, bond)
        if info.is_mature or info.collateral != self.collateral:
            return False
        ttm = info.time_to_maturity(self.ledger.current_time)
        return cfg.min_tranche_maturity_sec <= ttm <= cfg.max_tranche_maturity_sec

    def _in_deposit_bond(self, state: Dict[str, Any], token: str) -> bool:
        dep = state['deposit_bond']
        return (dep is not None and not self._is_collateral(token) and self.ledger.has_unit(token)
                and is_tranche(self.ledger, token) and bond_of(self.ledger, token) == dep)

    def _yield(self, state: Dict[str, Any], token: str) -> Decimal:
        if self._is_collateral(token):
            return ONE
        applied = state['applied_yields'].get(token)
        if applied is not None:
            return applied
        return self.yield_strategy.compute_yield(self.ledger, token)

    def _price(self, state: Dict[str, Any], token: str) -> Decimal:
        if self._is_collateral(token):
            return self.pricing_strategy.compute_mature_tranche_price(
                self.ledger, token, self._reserve_balance(token), state['mature_tranche_balance']
            )
        return self.pricing_strategy.compute_tranche_price(self.ledger, token)

    def _to_std(self, state: Dict[str, Any], token: str, amt: Decimal) -> Decimal:
        """Token amount -> std amount (collateral goes through mature_tranche_balance)."""
        if not self._is_collateral(token):
            return amt
        balance = self._reserve_balance(token)
        if balance == ZERO:
            return ZERO
        return floor_to(amt * state['mature_tranche_balance'] / balance)

    def _from_std(self, state: Dict[str, Any], token: str, std_amt: Decimal) -> Decimal:
        if not self._is_collateral(token):
            return std_amt
        mtb = state['mature_tranche_balance']
        if mtb == ZERO:
            return ZERO
        return floor_to(std_amt * self._reserve_balance(token) / mtb)

    def _value(self, state: Dict[str, Any], token: str, amt: Decimal) -> Decimal:
        return self._to_std(state, token, amt) * self._yield(state, token) * self._price(state, token)

    def _sync_reserve(self, state: Dict[str, Any], token: str) -> None:
        """Keep reserve membership equal to 'balance is non-zero'."""
        balance = self._reserve_balance(token)
        reserves: List[str] = state['reserves']
        if balance > ZERO and token not in reserves:
            if self._is_collateral(token):
                reserves.insert(0, token)
            else:
                reserves.append(token)
        elif balance == ZERO and token in reserves:
            reserves.remove(token)
        self._emit(RESERVE_SYNCED, token, balance=balance)

    def _accept_tranche(self, state: Dict[str, Any], tranche: str, yield_: Decimal) -> None:
        """Freeze the yield and enqueue a tranche entering the reserve for the first time."""
        if tranche not in state['applied_yields']:
            state['applied_yields'][tranche] = yield_
            self._emit(YIELD_APPLIED, tranche, yield_factor=yield_)
        queue = RedemptionQueue.from_list(state['queue'])
        if tranche not in queue:
            state['queue'] = queue.enqueue(tranche).to_list()
            self._emit(TRANCHE_ENQUEUED, tranche)

    def _is_fee_exempt(self, cfg: NoteConfig, caller: str) -> bool:
        """Configured exempt wallets and the linked vault pay no mint or burn fee."""
        return caller in cfg.fee_exempt or (self.vault is not None and caller == self.vault.wallet)

    def _fee_amt(self, amt: Decimal, perc: Decimal) -> Decimal:
        """Signed fee, magnitude rounded down."""
        magnitude = floor_to(amt * abs(perc))
        return magnitude if perc >= ZERO else -magnitude

    def _fee_moves(self, cfg: NoteConfig, payer: str, fee_amt: Decimal, event: str) -> List[Move]:
        if fee_amt > ZERO:
            return [Move(fee_amt, self.symbol, payer, cfg.fee_collector, f'{self.symbol}_{event}_fee')]
        if fee_amt < ZERO:
            return [Move(-fee_amt, self.symbol, cfg.fee_collector, payer, f'{self.symbol}_{event}_rebate')]
        return []

    # ========================================================================
    # STATE ADVANCE
    # ========================================================================

    def update_state(self) -> None:
        """
        Advance time-dependent state. Idempotent for a fixed ledger time.

        1. Move the deposit bond to the issuer's latest bond when that bond's
           time to maturity is inside the tolerable window; drop it once it
           falls below the minimum.
        2. Evict queue heads whose time to maturity is below the minimum.
        3. Settle reserve tranches whose bond has matured into collateral.
        """
        self.initializer.require_initialized()
        cfg = self.config
        with self.ledger.atomic():
            self._update_state(cfg)

    def _update_state(self, cfg: NoteConfig) -> None:
        old_state = self._state()
        state = copy.deepcopy(old_state)
        ledger = self.ledger

        latest = self.bond_issuer.get_latest_bond()
        if latest is not None and latest != state['deposit_bond'] and self._is_acceptable_bond(cfg, latest):
            state['deposit_bond'] = latest
            self._emit(DEPOSIT_BOND_UPDATED, latest)
        elif state['deposit_bond'] is not None and not self._is_acceptable_bond(cfg, state['deposit_bond']):
            self._emit(DEPOSIT_BOND_UPDATED, "", previous=state['deposit_bond'])
            state['deposit_bond'] = None

        evicted, queue = RedemptionQueue.from_list(state['queue']).evict_while(
            lambda t: self._time_to_maturity(t) < cfg.min_tranche_maturity_sec
        )
        for tranche in evicted:
            self._emit(TRANCHE_DEQUEUED, tranche, reason="maturity")

        for tranche in [t for t in state['reserves'] if not self._is_collateral(t)]:
            bond = bond_of(ledger, tranche)
            info = load_bond(ledger, bond)
            if not (info.is_mature or info.is_due(ledger.current_time)):
                continue
            if not info.is_mature:
                mature(ledger, bond)
            balance = self._reserve_balance(tranche)
            if balance > ZERO:
                std_amt = floor_to(balance * state['applied_yields'].get(tranche, ONE))
                ledger.execute_or_raise(compute_redeem_mature(
                    ledger, tranche, self.reserve_wallet, balance, ledger.next_nonce(self.symbol)
                ))
                state['mature_tranche_balance'] += std_amt
                self._emit(MATURE_TRANCHE_SETTLED, tranche, amount=balance, std_amount=std_amt)
            if tranche in queue:
                queue = RedemptionQueue(tuple(t for t in queue if t != tranche))
                self._emit(TRANCHE_DEQUEUED, tranche, reason="matured")
            self._sync_reserve(state, tranche)
            self._sync_reserve(state, self.collateral)

        state['queue'] = queue.to_list()
        self._save(old_state, state, "UPDATE_STATE")

    # ========================================================================
    # MINT
    # ========================================================================

    def mint(self, caller: str, tranche: str, tranche_amt) -> MintResult:
        """Deposit tranche_amt of a deposit-bond tranche and receive notes."""
        self._require_active()
        cfg = self.config
        with self.ledger.atomic():
            self._update_state(cfg)
            result = self._mint(cfg, caller, tranche, to_decimal(tranche_amt))
        if self.ledger.verbose:
            print(f"✓ MINT {caller}: {result.tranche_amt} {tranche} -> {result.received} {self.symbol}"
                  f" (fee {result.fee_amt})")
        return result

    def _mint(self, cfg: NoteConfig, caller: str, tranche: str, tranche_amt: Decimal) -> MintResult:
        if tranche_amt <= ZERO:
            raise UnacceptableMintAmt(f"tranche amount must be positive, got {tranche_amt}")
        state = self._state()
        old_state = copy.deepcopy(state)
        if not self._in_deposit_bond(state, tranche):
            raise UnacceptableDeposit(f"{tranche} is not a tranche of deposit bond {state['deposit_bond']}")

        yield_ = self._yield(state, tranche)
        mint_amt = calculate_mint_amt(tranche_amt, yield_, self._price(state, tranche))
        if mint_amt <= ZERO:
            raise UnacceptableMintAmt(f"{tranche_amt} {tranche} mints nothing")

        if cfg.max_supply is not None and self.total_supply() + mint_amt > cfg.max_supply:
            raise ExceededMaxSupply(f"supply would exceed {cfg.max_supply}")
        minted = state['minted_per_tranche'].get(tranche, ZERO) + mint_amt
        if cfg.max_mint_amt_per_tranche is not None and minted > cfg.max_mint_amt_per_tranche:
            raise ExceededMaxMintPerTranche(f"{tranche} mint would exceed {cfg.max_mint_amt_per_tranche}")

        perc = ZERO if self._is_fee_exempt(cfg, caller) else self.fee_policy.compute_perp_mint_fee_perc(
            self.compute_deviation_ratio()
        )
        fee_amt = self._fee_amt(mint_amt, perc)

        moves = [Move(tranche_amt, tranche, caller, self.reserve_wallet, f'{self.symbol}_mint')]
        if fee_amt > ZERO:
            if mint_amt - fee_amt > ZERO:
                moves.append(Move(mint_amt - fee_amt, self.symbol, SYSTEM_WALLET, caller, f'{self.symbol}_mint'))
            moves.append(Move(fee_amt, self.symbol, SYSTEM_WALLET, cfg.fee_collector, f'{self.symbol}_mint_fee'))
        else:
            moves.append(Move(mint_amt, self.symbol, SYSTEM_WALLET, caller, f'{self.symbol}_mint'))
            moves += self._fee_moves(cfg, caller, fee_amt, "mint")
        self._transfer(moves, "MINT")

        self._accept_tranche(state, tranche, yield_)
        state['minted_per_tranche'][tranche] = minted
        self._sync_reserve(state, tranche)
        self._save(old_state, state, "MINT")
        return MintResult(tranche, tranche_amt, mint_amt, fee_amt)

    # ========================================================================
    # REDEEM
    # ========================================================================

    def redeem(self, caller: str, token: str, note_amt) -> RedemptionResult:
        """
        Burn notes for a reserve asset.

        With a non-empty queue only the queue head may be redeemed; with an
        empty queue any reserve asset may be.
        """
        self._require_active()
        cfg = self.config
        with self.ledger.atomic():
            self._update_state(cfg)
            result = self._redeem(cfg, caller, token, to_decimal(note_amt))
        if self.ledger.verbose:
            print(f"✓ REDEEM {caller}: {result.burn_amt} {self.symbol} -> {result.token_amt} {token}"
                  f" (fee {result.fee_amt}, leftover {result.leftover_amt})")
        return result

    def compute_redemption_amts(self, token: str, note_amt) -> RedemptionResult:
        """Preview a redemption against the current state (no advance, no fee)."""
        state = self._state()
        return self._redemption_amts(state, token, to_decimal(note_amt), ZERO)

    def _redemption_amts(self, state: Dict[str, Any], token: str, note_amt: Decimal, perc: Decimal) -> RedemptionResult:
        if note_amt <= ZERO:
            raise UnacceptableRedemption(f"note amount must be positive, got {note_amt}")
        if token not in state['reserves']:
            raise UnacceptableRedemption(f"{token} is not in the reserve")
        unit_value = self._yield(state, token) * self._price(state, token)
        if unit_value <= ZERO:
            raise UnacceptableRedemption(f"{token} has zero value")
        std_balance = self._to_std(state, token, self._reserve_balance(token))
        std_amt, burn_amt, leftover = calculate_redemption_amts(note_amt, unit_value, std_balance)
        token_amt = self._from_std(state, token, std_amt)
        if std_amt <= ZERO or token_amt <= ZERO or burn_amt <= ZERO:
            raise UnacceptableRedemption(f"{note_amt} {self.symbol} redeems nothing of {token}")
        return RedemptionResult(token, token_amt, burn_amt, self._fee_amt(burn_amt, perc), leftover)

    def _redeem(self, cfg: NoteConfig, caller: str, token: str, note_amt: Decimal) -> RedemptionResult:
        state = self._state()
        old_state = copy.deepcopy(state)
        head = RedemptionQueue.from_list(state['queue']).peek()
        if head is not None and token != head:
            raise UnacceptableRedemptionTranche(f"{token} is not the queue head {head}")

        perc = ZERO if self._is_fee_exempt(cfg, caller) else self.fee_policy.compute_perp_burn_fee_perc(
            self.compute_deviation_ratio()
        )
        result = self._redemption_amts(state, token, note_amt, perc)
        if self.ledger.get_balance(caller, self.symbol) < result.burn_amt + max(result.fee_amt, ZERO):
            raise InsufficientFunds(f"{caller} holds less than {result.note_cost} {self.symbol}")

        std_amt = self._to_std(state, token, result.token_amt)
        moves = [
            Move(result.burn_amt, self.symbol, caller, SYSTEM_WALLET, f'{self.symbol}_redeem'),
            Move(result.token_amt, token, self.reserve_wallet, caller, f'{self.symbol}_redeem'),
        ]
        moves += self._fee_moves(cfg, caller, result.fee_amt, "burn")
        self._transfer(moves, "REDEEM")

        if self._is_collateral(token):
            state['mature_tranche_balance'] = max(state['mature_tranche_balance'] - std_amt, ZERO)
        elif token in state['minted_per_tranche']:
            state['minted_per_tranche'][token] = max(state['minted_per_tranche'][token] - result.burn_amt, ZERO)
        self._sync_reserve(state, token)

        if head == token and self._reserve_balance(token) == ZERO:
            _, queue = RedemptionQueue.from_list(state['queue']).dequeue()
            state['queue'] = queue.to_list()
            self._emit(TRANCHE_DEQUEUED, token, reason="redeemed")

        self._save(old_state, state, "REDEEM")
        return result

    # ========================================================================
    # ROLLOVER
    # ========================================================================

    def rollover(self, caller: str, tranche_in: str, token_out: str, tranche_in_amt) -> RolloverData:
        """Swap a deposit-bond tranche for an ageing reserve asset. Supply is unchanged."""
        self._require_active()
        cfg = self.config
        with self.ledger.atomic():
            self._update_state(cfg)
            result = self._rollover(cfg, caller, tranche_in, token_out, to_decimal(tranche_in_amt))
        if self.ledger.verbose:
            print(f"✓ ROLLOVER {caller}: {result.tranche_in_amt} {tranche_in} -> "
                  f"{result.token_out_amt} {token_out} (fee {result.fee_perc})")
        return result

    def compute_rollover_amt(
        self,
        tranche_in: str,
        token_out: str,
        tranche_in_amt_available,
        token_out_amt_requested=None,
    ) -> RolloverData:
        """
        Amounts a rollover would exchange right now.

        token_out_amt_requested caps the out side (default: the whole reserve
        balance). Ineligible pairs raise UnacceptableRollover.
        """
        state = self._state()
        self._check_rollover_pair(state, tranche_in, token_out)
        return self._rollover_amts(state, tranche_in, token_out, to_decimal(tranche_in_amt_available),
                                   None if token_out_amt_requested is None else to_decimal(token_out_amt_requested))

    def is_acceptable_rollover(self, tranche_in: str, token_out: str) -> bool:
        state = self._state()
        try:
            self._check_rollover_pair(state, tranche_in, token_out)
        except UnacceptableRollover:
            return False
        return True

    def _check_rollover_pair(self, state: Dict[str, Any], tranche_in: str, token_out: str) -> None:
        if not self._in_deposit_bond(state, tranche_in):
            raise UnacceptableRollover(f"{tranche_in} is not a deposit bond tranche")
        if token_out == tranche_in or token_out not in state['reserves']:
            raise UnacceptableRollover(f"{token_out} is not in the reserve")
        if self._in_deposit_bond(state, token_out):
            raise UnacceptableRollover(f"{token_out} belongs to the deposit bond")
        if token_out in state['queue']:
            raise UnacceptableRollover(f"{token_out} is still in the redemption queue")

    def _rollover_amts(
        self,
        state: Dict[str, Any],
        tranche_in: str,
        token_out: str,
        tranche_in_amt: Decimal,
        token_out_cap: Optional[Decimal] = None,
    ) -> RolloverData:
        fee_perc = self.fee_policy.compute_perp_rollover_fee_perc(self.compute_deviation_ratio())
        value_in = self._yield(state, tranche_in) * self._price(state, tranche_in)
        value_out = self._yield(state, token_out) * self._price(state, token_out)

        max_out = self._reserve_balance(token_out)
        if token_out_cap is not None:
            max_out = min(max_out, token_out_cap)
        std_max_out = self._to_std(state, token_out, max_out)

        if tranche_in_amt <= ZERO or value_in <= ZERO or fee_perc >= ONE:
            in_amt, std_out = ZERO, ZERO
        else:
            in_amt, std_out = calculate_rollover_amts(tranche_in_amt, value_in, value_out, fee_perc, std_max_out)
        out_amt = max_out if std_out == std_max_out and std_out > ZERO else self._from_std(state, token_out, std_out)
        return RolloverData(
            tranche_in=tranche_in,
            token_out=token_out,
            tranche_in_amt=in_amt,
            token_out_amt=out_amt,
            perp_rollover_amt=floor_to(in_amt * value_in),
            fee_perc=fee_perc,
        )

    def _rollover(self, cfg: NoteConfig, caller: str, tranche_in: str, token_out: str, tranche_in_amt: Decimal) -> RolloverData:
        if tranche_in_amt <= ZERO:
            raise UnacceptableRolloverAmt(f"tranche amount must be positive, got {tranche_in_amt}")
        state = self._state()
        old_state = copy.deepcopy(state)
        self._check_rollover_pair(state, tranche_in, token_out)

        yield_in = self._yield(state, tranche_in)
        result = self._rollover_amts(state, tranche_in, token_out, tranche_in_amt)
        if result.tranche_in_amt <= ZERO or result.token_out_amt <= ZERO:
            raise UnacceptableRolloverAmt(f"rollover of {tranche_in_amt} {tranche_in} for {token_out} is zero")

        std_out = self._to_std(state, token_out, result.token_out_amt)
        self._transfer([
            Move(result.tranche_in_amt, tranche_in, caller, self.reserve_wallet, f'{self.symbol}_rollover'),
            Move(result.token_out_amt, token_out, self.reserve_wallet, caller, f'{self.symbol}_rollover'),
        ], "ROLLOVER")

        if self._is_collateral(token_out):
            state['mature_tranche_balance'] = max(state['mature_tranche_balance'] - std_out, ZERO)
        self._accept_tranche(state, tranche_in, yield_in)
        self._sync_reserve(state, tranche_in)
        self._sync_reserve(state, token_out)
        self._save(old_state, state, "ROLLOVER")
        return result

    # ========================================================================
    # BURN
    # ========================================================================

    def burn(self, caller: str, note_amt) -> Decimal:
        """Destroy notes without touching the reserve."""
        self._require_active()
        amt = to_decimal(note_amt)
        if amt <= ZERO:
            raise UnacceptableRedemption(f"burn amount must be positive, got {amt}")
        with self.ledger.atomic():
            self._transfer([Move(amt, self.symbol, caller, SYSTEM_WALLET, f'{self.symbol}_burn')], "BURN")
        return amt

    # ========================================================================
    # QUERIES
    # ========================================================================

    def total_supply(self) -> Decimal:
        return self.ledger.circulating_supply(self.symbol)

    def balance_of(self, wallet: str) -> Decimal:
        return self.ledger.get_balance(wallet, self.symbol)

    def get_deposit_bond(self) -> Optional[str]:
        return self._state()['deposit_bond']

    def get_redemption_queue(self) -> List[str]:
        return list(self._state()['queue'])

    def get_redemption_queue_head(self) -> Optional[str]:
        return RedemptionQueue.from_list(self._state()['queue']).peek()

    def reserve_tokens(self) -> List[str]:
        return list(self._state()['reserves'])

    def reserve_count(self) -> int:
        return len(self.reserve_tokens())

    def reserve_at(self, index: int) -> str:
        return self.reserve_tokens()[index]

    def in_reserve(self, token: str) -> bool:
        return token in self.reserve_tokens()

    def reserve_balance(self, token: str) -> Decimal:
        return self._reserve_balance(token)

    def mature_tranche_balance(self) -> Decimal:
        return self._state()['mature_tranche_balance']

    def applied_yield(self, tranche: str) -> Optional[Decimal]:
        return self._state()['applied_yields'].get(tranche)

    def get_reserve_tokens_up_for_rollover(self) -> List[str]:
        """Collateral first, then reserve tranches outside the deposit bond and the queue."""
        state = self._state()
        return [
            t for t in state['reserves']
            if self._is_collateral(t)
            or (not self._in_deposit_bond(state, t) and t not in state['queue'])
        ]

    def compute_yield(self, token: str) -> Decimal:
        return self._yield(self._state(), token)

    def compute_price(self, token: str) -> Decimal:
        return self._price(self._state(), token)

    def compute_mint_amt(self, tranche: str, tranche_amt) -> Decimal:
        state = self._state()
        if not self._in_deposit_bond(state, tranche):
            return ZERO
        return calculate_mint_amt(to_decimal(tranche_amt), self._yield(state, tranche), self._price(state, tranche))

    def compute_tranche_amt_for_mint(self, tranche: str, note_amt) -> Decimal:
        """Smallest tranche amount that mints at least note_amt (zero if the tranche mints nothing)."""
        state = self._state()
        unit_value = self._yield(state, tranche) * self._price(state, tranche)
        if unit_value <= ZERO:
            return ZERO
        return ceil_to(to_decimal(note_amt) / unit_value)

    def get_tvl(self) -> Decimal:
        state = self._state()
        return floor_to(sum(
            (self._value(state, t, self._reserve_balance(t)) for t in state['reserves']),
            ZERO,
        ))

    def get_reserve_value(self, token: str) -> Decimal:
        state = self._state()
        return floor_to(self._value(state, token, self._reserve_balance(token)))

    def average_price(self) -> Decimal:
        """TVL per note; 1 before the first mint."""
        supply = self.total_supply()
        if supply == ZERO:
            return ONE
        return self.get_tvl() / supply

    def subscription_params(self) -> SubscriptionParams:
        dep = self.get_deposit_bond()
        if dep is not None:
            senior_tr = load_bond(self.ledger, dep).senior_ratio
        else:
            senior_tr = self.bond_issuer.config.tranche_ratios[0]
        vault_tvl = self.vault.get_tvl() if self.vault is not None else ZERO
        return SubscriptionParams(self.get_tvl(), vault_tvl, senior_tr)

    def compute_deviation_ratio(self) -> Decimal:
        return self.fee_policy.compute_deviation_ratio(self.subscription_params())

    # ========================================================================
    # GOVERNANCE
    # ========================================================================

    def update_config(self, caller: str, **changes) -> NoteConfig:
        """Replace config fields through the owner-only path; validated as a whole."""
        self.access.require_owner(caller)
        self.initializer.require_initialized()
        new_config = replace(self.config, **changes)
        if new_config.fee_collector != self.config.fee_collector:
            self.ledger.ensure_wallet(new_config.fee_collector)
        self.config = new_config
        self._emit(CONFIG_UPDATED, "", **{k: str(v) for k, v in changes.items()})
        return new_config

    def update_tolerable_tranche_maturity(self, caller: str, min_sec: int, max_sec: int) -> None:
        self.update_config(caller, min_tranche_maturity_sec=min_sec, max_tranche_maturity_sec=max_sec)

    def update_minting_limits(self, caller: str, max_supply, max_mint_amt_per_tranche) -> None:
        self.update_config(
            caller,
            max_supply=None if max_supply is None else to_decimal(max_supply),
            max_mint_amt_per_tranche=None if max_mint_amt_per_tranche is None else to_decimal(max_mint_amt_per_tranche),
        )

    def update_fee_collector(self, caller: str, collector: str) -> None:
        self.update_config(caller, fee_collector=collector)

    def _update_ref(self, caller: str, attr: str, value) -> None:
        self.access.require_owner(caller)
        if value is None and attr != "vault":
            raise InvalidConfig(f"{attr} cannot be None")
        setattr(self, attr, value)
        self._emit(CONFIG_UPDATED, "", **{attr: repr(value)})

    def update_fee_policy(self, caller: str, fee_policy: FeePolicy) -> None:
        self._update_ref(caller, "fee_policy", fee_policy)

    def update_pricing_strategy(self, caller: str, pricing_strategy) -> None:
        self._update_ref(caller, "pricing_strategy", pricing_strategy)

    def update_yield_strategy(self, caller: str, yield_strategy) -> None:
        self._update_ref(caller, "yield_strategy", yield_strategy)

    def update_bond_issuer(self, caller: str, bond_issuer) -> None:
        if bond_issuer is not None and bond_issuer.collateral != self.collateral:
            raise InvalidConfig("bond issuer collateral does not match")
        self._update_ref(caller, "bond_issuer", bond_issuer)

    def update_vault(self, caller: str, vault) -> None:
        self._update_ref(caller, "vault", vault)

    def set_paused(self, caller: str, paused: bool) -> None:
        self.access.require_owner(caller)
        self.pause.set_paused(paused)
        self._emit(PAUSED if paused else UNPAUSED)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.access.transfer_ownership(caller, new_owner)
        self._emit(OWNERSHIP_TRANSFERRED, "", owner=new_owner)

    def __repr__(self) -> str:
        return f"PerpetualTranche({self.symbol}, reserve={self.reserve_wallet})"
