"""
rollover_vault.py - Pooled rollover participant

The vault holds the collateral token ("underlying") for its share holders
and puts it to work:

    deploy:   tranche idle underlying into the note engine's deposit bond and
              roll the fresh tranches into the note reserve in exchange for
              ageing reserve assets.
    recover:  turn deployed tranches back into underlying (mature bonds are
              redeemed for their pot, live bonds in full tranche sets).
    swap:     sell notes for underlying or buy notes with underlying at the
              note's average price, with deviation-ratio driven fees.

Shares are the VAULT_SHARE unit. Deposits mint shares against TVL, redeems
pay out a pro-rata slice of every asset the vault holds.

Vault state (in the share unit):
    underlying   collateral token symbol
    perp         note symbol
    deployed     tranches held with non-zero balance, in deployment order
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional
import copy

from .core import (
    Move, UnitStateChange, TransactionOrigin, OriginType, Unit, build_transaction,
    SYSTEM_WALLET, UNIT_TYPE_VAULT_SHARE, TOKEN_DECIMALS, TRANCHE_RATIO_GRANULARITY, ZERO, ONE,
    InsufficientDeployment, DeployedCountOverLimit, UnexpectedAsset, InsufficientLiquidity,
    UnacceptableSwap, UnacceptableShareAmt, InvalidConfig, InvalidPerc, InsufficientFunds,
    _freeze_state, to_decimal, floor_to, ceil_to,
)
from .access import AccessControl, OneTimeInit, PauseControl, ReentrancyGuard
from .events import make_event, VAULT_ASSET_SYNCED, CONFIG_UPDATED, OWNERSHIP_TRANSFERRED, PAUSED, UNPAUSED
from .fee_policy import SubscriptionParams
from .units import bond as bonds
from .units.bond import bond_of, load_bond, total_debt, compute_tranche_collateralization, compute_proportional_redemption_amts


INITIAL_RATE = Decimal(10**6)
MAX_DEPLOYED_COUNT = 47


@dataclass(frozen=True, slots=True)
class VaultConfig:
    """
    min_deployment_amt: smallest idle balance deploy() will tranche.
    max_deployed_count: cap on distinct deployed tranches.
    min_underlying_bal / min_underlying_perc: liquidity floors swaps must leave.
    """
    min_deployment_amt: Decimal = ZERO
    max_deployed_count: int = MAX_DEPLOYED_COUNT
    min_underlying_bal: Decimal = ZERO
    min_underlying_perc: Decimal = ZERO

    def __post_init__(self):
        for name in ("min_deployment_amt", "min_underlying_bal", "min_underlying_perc"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))
        if self.min_deployment_amt < ZERO or self.min_underlying_bal < ZERO:
            raise InvalidConfig("minimum balances must be non-negative")
        if not ZERO <= self.min_underlying_perc <= ONE:
            raise InvalidPerc(f"min_underlying_perc={self.min_underlying_perc} outside [0, 1]")
        if self.max_deployed_count < 1:
            raise InvalidConfig("max_deployed_count must be at least 1")


@dataclass(frozen=True, slots=True)
class TokenAmount:
    token: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class SwapQuote:
    """Outcome of a swap before execution. Fee amounts are in the unit named by the swap direction."""
    amt_out: Decimal
    perp_fee_amt: Decimal
    vault_fee_amt: Decimal
    params: SubscriptionParams


class RolloverVault:
    """
    Vault over a PerpetualTranche.

    Example:
        vault = RolloverVault(ledger, "VAULT", "Rollover vault", owner="gov")
        vault.init("gov", perp)
        perp.update_vault("gov", vault)
        vault.deposit("alice", Decimal("1000"))
        vault.deploy()
    """

    def __init__(self, ledger, symbol: str, name: str, owner: str):
        self.ledger = ledger
        self.symbol = symbol
        self.name = name
        self.wallet = symbol
        self.access = AccessControl(owner)
        self.initializer = OneTimeInit()
        self.pause = PauseControl()
        self.guard = ReentrancyGuard(symbol)
        self.config = VaultConfig()
        self.perp = None
        self.fee_policy = None
        self.market_oracle = None
        self.underlying: Optional[str] = None

    def init(self, caller: str, perp, fee_policy=None, config: Optional[VaultConfig] = None,
             market_oracle=None) -> None:
        self.access.require_owner(caller)
        self.initializer.initialize()
        self.perp = perp
        self.fee_policy = fee_policy or perp.fee_policy
        self.config = config or VaultConfig()
        self.market_oracle = market_oracle
        self.underlying = perp.collateral

        self.ledger.ensure_wallet(self.wallet)
        self.ledger.register_unit(Unit(
            symbol=self.symbol,
            name=self.name,
            unit_type=UNIT_TYPE_VAULT_SHARE,
            decimal_places=TOKEN_DECIMALS,
            _frozen_state=_freeze_state({
                'underlying': self.underlying,
                'perp': perp.symbol,
                'deployed': [],
            }),
        ))

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _require_active(self) -> None:
        self.initializer.require_initialized()
        self.pause.require_not_paused()

    def _origin(self, event: str) -> TransactionOrigin:
        return TransactionOrigin(OriginType.CONTRACT, self.ledger.next_nonce(self.symbol), self.symbol, event)

    def _transfer(self, moves: List[Move], event: str) -> None:
        if moves:
            self.ledger.execute_or_raise(build_transaction(self.ledger, moves, origin=self._origin(event)))

    def _balance(self, token: str) -> Decimal:
        return self.ledger.get_balance(self.wallet, token)

    def _sync_assets(self) -> None:
        """Rebuild the deployed list from balances and publish asset balances."""
        old_state = self.ledger.get_unit_state(self.symbol)
        state = copy.deepcopy(old_state)
        deployed = [t for t in state['deployed'] if self._balance(t) > ZERO]
        for tranche in self._held_tranches():
            if tranche not in deployed:
                deployed.append(tranche)
        state['deployed'] = deployed

        for token in [self.underlying, self.perp.symbol] + deployed:
            self.ledger.emit(make_event(self.ledger.current_time, self.symbol, VAULT_ASSET_SYNCED,
                                        token, balance=self._balance(token)))
        for token in old_state['deployed']:
            if token not in deployed:
                self.ledger.emit(make_event(self.ledger.current_time, self.symbol, VAULT_ASSET_SYNCED,
                                            token, balance=ZERO))

        if state != old_state:
            self.ledger.execute_or_raise(build_transaction(
                self.ledger, [], [UnitStateChange(self.symbol, old_state, state)],
                origin=self._origin("SYNC"),
            ))

    def _held_tranches(self) -> List[str]:
        """Tranches on the vault's underlying with a non-zero vault balance."""
        held = []
        for symbol, qty in sorted(self.ledger.get_wallet_balances(self.wallet).items()):
            if qty <= ZERO or symbol in (self.underlying, self.perp.symbol, self.symbol):
                continue
            if bonds.is_tranche(self.ledger, symbol):
                held.append(symbol)
        return held

    def _tranche_value(self, tranche: str, balance: Decimal) -> Decimal:
        claim, debt = compute_tranche_collateralization(self.ledger, tranche)
        if debt == ZERO:
            return ZERO
        return floor_to(balance * claim / debt)

    def _oracle_valid(self) -> bool:
        if self.market_oracle is None:
            return True
        return self.market_oracle.get_reading(self.underlying, self.ledger.current_time).valid

    # ========================================================================
    # QUERIES
    # ========================================================================

    def deployed_tokens(self) -> List[str]:
        return list(self.ledger.get_unit_state(self.symbol)['deployed'])

    def deployed_count(self) -> int:
        return len(self.deployed_tokens())

    def asset_count(self) -> int:
        """Underlying plus deployed tranches (held notes are counted separately)."""
        return 1 + self.deployed_count()

    def vault_assets(self) -> List[TokenAmount]:
        assets = [TokenAmount(self.underlying, self._balance(self.underlying))]
        assets += [TokenAmount(t, self._balance(t)) for t in self.deployed_tokens()]
        notes = self._balance(self.perp.symbol)
        if notes > ZERO:
            assets.append(TokenAmount(self.perp.symbol, notes))
        return assets

    def get_vault_asset_value(self, token: str) -> Decimal:
        balance = self._balance(token)
        if token == self.underlying:
            return balance
        if token == self.perp.symbol:
            return floor_to(balance * self.perp.average_price())
        if token in self.deployed_tokens():
            return self._tranche_value(token, balance)
        return ZERO

    def get_tvl(self) -> Decimal:
        """Idle underlying + deployed tranches at their collateralization + notes at average price."""
        tvl = self._balance(self.underlying)
        for tranche in self.deployed_tokens():
            tvl += self._tranche_value(tranche, self._balance(tranche))
        notes = self._balance(self.perp.symbol)
        if notes > ZERO:
            tvl += floor_to(notes * self.perp.average_price())
        return tvl

    def subscription_params(self) -> SubscriptionParams:
        """Note TVL, this vault's TVL, the deposit bond's senior ratio and oracle validity."""
        return replace(self.perp.subscription_params(), vault_tvl=self.get_tvl(), valid=self._oracle_valid())

    def total_supply(self) -> Decimal:
        return self.ledger.circulating_supply(self.symbol)

    def balance_of(self, wallet: str) -> Decimal:
        return self.ledger.get_balance(wallet, self.symbol)

    def compute_mint_amt(self, underlying_amt) -> Decimal:
        """Shares minted for a deposit, after the vault mint fee."""
        amt = to_decimal(underlying_amt)
        supply = self.total_supply()
        if supply == ZERO:
            shares = floor_to(amt * INITIAL_RATE)
        else:
            tvl = self.get_tvl()
            if tvl <= ZERO:
                return ZERO
            shares = floor_to(amt * supply / tvl)
        return shares - floor_to(shares * self.fee_policy.compute_vault_mint_fee_perc())

    def compute_redemption_amts(self, shares) -> List[TokenAmount]:
        """Pro-rata slice of every asset for burning `shares`, after the vault burn fee."""
        shares = to_decimal(shares)
        supply = self.total_supply()
        if supply == ZERO or shares <= ZERO:
            return []
        effective = shares - floor_to(shares * self.fee_policy.compute_vault_burn_fee_perc())
        return [
            TokenAmount(a.token, floor_to(a.amount * effective / supply))
            for a in self.vault_assets()
        ]

    # ========================================================================
    # DEPOSIT / REDEEM
    # ========================================================================

    def deposit(self, caller: str, underlying_amt) -> Decimal:
        self._require_active()
        amt = to_decimal(underlying_amt)
        with self.ledger.atomic(), self.guard:
            shares = self.compute_mint_amt(amt) if amt > ZERO else ZERO
            if shares <= ZERO:
                raise UnacceptableShareAmt(f"deposit of {amt} mints no shares")
            self._transfer([
                Move(amt, self.underlying, caller, self.wallet, f'{self.symbol}_deposit'),
                Move(shares, self.symbol, SYSTEM_WALLET, caller, f'{self.symbol}_deposit'),
            ], "DEPOSIT")
            self._sync_assets()
        if self.ledger.verbose:
            print(f"✓ VAULT DEPOSIT {caller}: {amt} {self.underlying} -> {shares} {self.symbol}")
        return shares

    def redeem(self, caller: str, shares) -> List[TokenAmount]:
        self._require_active()
        shares = to_decimal(shares)
        if shares <= ZERO:
            raise UnacceptableShareAmt(f"share amount must be positive, got {shares}")
        if self.balance_of(caller) < shares:
            raise InsufficientFunds(f"{caller} holds less than {shares} {self.symbol}")
        with self.ledger.atomic(), self.guard:
            amounts = self.compute_redemption_amts(shares)
            moves = [Move(shares, self.symbol, caller, SYSTEM_WALLET, f'{self.symbol}_redeem')]
            moves += [
                Move(a.amount, a.token, self.wallet, caller, f'{self.symbol}_redeem')
                for a in amounts if a.amount > ZERO
            ]
            self._transfer(moves, "REDEEM")
            self._sync_assets()
        if self.ledger.verbose:
            print(f"✓ VAULT REDEEM {caller}: {shares} {self.symbol} -> "
                  + ", ".join(f"{a.amount} {a.token}" for a in amounts))
        return amounts

    # ========================================================================
    # DEPLOY / RECOVER
    # ========================================================================

    def deploy(self) -> Decimal:
        """
        Tranche idle underlying, less the flat deployment fee which stays idle,
        and roll the fresh tranches into the note reserve.

        Returns the total value rolled, in notes. Nothing rolled raises
        InsufficientDeployment and the whole operation is reverted.
        """
        self._require_active()
        with self.ledger.atomic(), self.guard:
            rolled = self._deploy()
            self._sync_assets()
            if self.deployed_count() > self.config.max_deployed_count:
                raise DeployedCountOverLimit(
                    f"{self.deployed_count()} deployed assets > {self.config.max_deployed_count}"
                )
        if self.ledger.verbose:
            print(f"✓ VAULT DEPLOY: rolled {rolled} {self.perp.symbol}")
        return rolled

    def _deploy(self) -> Decimal:
        perp = self.perp
        perp.update_state()
        deposit_bond = perp.get_deposit_bond()
        deployment_fee = self.fee_policy.compute_vault_deployment_fee()
        deployable = self._balance(self.underlying) - deployment_fee
        if deposit_bond is None:
            raise InsufficientDeployment("no deposit bond")
        if deployable <= ZERO or deployable < self.config.min_deployment_amt:
            raise InsufficientDeployment(
                f"deployable balance {deployable} below {self.config.min_deployment_amt}"
                f" (deployment fee {deployment_fee})"
            )

        bonds.deposit(self.ledger, deposit_bond, self.wallet, deployable)
        self._sync_assets()

        tranches_in = list(load_bond(self.ledger, deposit_bond).tranches)
        tokens_out = perp.get_reserve_tokens_up_for_rollover()
        total_rolled = ZERO
        i = j = 0
        while i < len(tranches_in) and j < len(tokens_out):
            tranche_in, token_out = tranches_in[i], tokens_out[j]
            available = self._balance(tranche_in)
            if available <= ZERO:
                i += 1
                continue
            quote = perp.compute_rollover_amt(tranche_in, token_out, available)
            if quote.tranche_in_amt <= ZERO or quote.token_out_amt <= ZERO:
                i += 1
                continue
            result = perp.rollover(self.wallet, tranche_in, token_out, quote.tranche_in_amt)
            total_rolled += result.perp_rollover_amt

            out_exhausted = perp.reserve_balance(token_out) <= ZERO
            in_exhausted = self._balance(tranche_in) <= ZERO
            if out_exhausted:
                j += 1
            if in_exhausted or not out_exhausted:
                i += 1

        if total_rolled <= ZERO:
            raise InsufficientDeployment("nothing to roll over")
        return total_rolled

    def recover(self) -> None:
        """Redeem every deployed tranche that can be turned back into underlying."""
        self._require_active()
        with self.ledger.atomic(), self.guard:
            self._recover_all()
            self._sync_assets()

    def recover_token(self, token: str) -> None:
        self._require_active()
        if token not in self.deployed_tokens():
            raise UnexpectedAsset(f"{token} is not a deployed asset")
        with self.ledger.atomic(), self.guard:
            self._recover_bond(bond_of(self.ledger, token))
            self._sync_assets()

    def recover_and_redeploy(self) -> Decimal:
        self._require_active()
        with self.ledger.atomic(), self.guard:
            self._recover_all()
            self._sync_assets()
            rolled = self._deploy()
            self._sync_assets()
            if self.deployed_count() > self.config.max_deployed_count:
                raise DeployedCountOverLimit(
                    f"{self.deployed_count()} deployed assets > {self.config.max_deployed_count}"
                )
        return rolled

    def _recover_all(self) -> None:
        seen = set()
        for tranche in self.deployed_tokens():
            bond = bond_of(self.ledger, tranche)
            if bond not in seen:
                seen.add(bond)
                self._recover_bond(bond)

    def _recover_bond(self, bond: str) -> None:
        ledger = self.ledger
        info = load_bond(ledger, bond)
        if info.is_mature or info.is_due(ledger.current_time):
            if not info.is_mature:
                bonds.mature(ledger, bond)
            for tranche in info.tranches:
                if self._balance(tranche) > ZERO:
                    bonds.redeem_mature(ledger, tranche, self.wallet)
            return
        amounts = compute_proportional_redemption_amts(
            [self._balance(t) for t in info.tranches], info.ratios
        )
        if any(a > ZERO for a in amounts):
            bonds.redeem(ledger, bond, self.wallet, amounts)

    # ========================================================================
    # SWAPS
    # ========================================================================

    def compute_underlying_to_perp_swap_amt(self, underlying_amt) -> SwapQuote:
        """Notes out for `underlying_amt`; perp fee in notes (burned), vault fee in notes (kept as underlying)."""
        amt = to_decimal(underlying_amt)
        params = self.subscription_params()
        params_post = replace(params, perp_tvl=params.perp_tvl + amt)
        dr_post = self.fee_policy.compute_deviation_ratio(params_post)
        perp_perc, vault_perc = self.fee_policy.compute_underlying_to_perp_swap_fee_percs(
            dr_post, params_post.valid
        )
        if perp_perc + vault_perc >= ONE:
            return SwapQuote(ZERO, ZERO, ZERO, params)
        gross = floor_to(amt / self.perp.average_price())
        perp_fee = floor_to(gross * perp_perc)
        vault_fee = floor_to(gross * vault_perc)
        return SwapQuote(gross - perp_fee - vault_fee, perp_fee, vault_fee, params)

    def compute_perp_to_underlying_swap_amt(self, note_amt) -> SwapQuote:
        """Underlying out for `note_amt`; perp fee in notes (burned), vault fee in underlying (kept)."""
        amt = to_decimal(note_amt)
        params = self.subscription_params()
        price = self.perp.average_price()
        gross = floor_to(amt * price)
        params_post = replace(params, perp_tvl=max(params.perp_tvl - gross, ZERO))
        dr_post = self.fee_policy.compute_deviation_ratio(params_post)
        perp_perc, vault_perc = self.fee_policy.compute_perp_to_underlying_swap_fee_percs(
            dr_post, params_post.valid
        )
        if perp_perc + vault_perc >= ONE:
            return SwapQuote(ZERO, ZERO, ZERO, params)
        perp_fee = floor_to(amt * perp_perc)
        vault_fee = floor_to(gross * vault_perc)
        return SwapQuote(floor_to((amt - perp_fee) * price) - vault_fee, perp_fee, vault_fee, params)

    def _check_liquidity(self) -> None:
        idle = self._balance(self.underlying)
        cfg = self.config
        if idle < cfg.min_underlying_bal:
            raise InsufficientLiquidity(f"idle {idle} below {cfg.min_underlying_bal}")
        tvl = self.get_tvl()
        if tvl > ZERO and idle / tvl < cfg.min_underlying_perc:
            raise InsufficientLiquidity(f"idle {idle} below {cfg.min_underlying_perc} of tvl {tvl}")

    def _underlying_for_tranche_amt(self, bond: str, index: int, tranche_amt: Decimal) -> Decimal:
        """Collateral a bond deposit needs to mint at least tranche_amt of tranche `index`."""
        info = load_bond(self.ledger, bond)
        debt_amt = tranche_amt * TRANCHE_RATIO_GRANULARITY / info.ratios[index]
        debt = total_debt(self.ledger, info)
        if debt > ZERO:
            debt_amt = debt_amt * self.ledger.get_balance(bond, info.collateral) / debt
        return ceil_to(debt_amt)

    def swap_underlying_for_perps(self, caller: str, underlying_amt) -> Decimal:
        """
        Sell notes to `caller` for underlying.

        The vault tranches underlying into the deposit bond, mints notes with
        the senior tranche and keeps the junior tranches.
        """
        self._require_active()
        amt = to_decimal(underlying_amt)
        if amt <= ZERO:
            raise UnacceptableSwap("swap amount must be positive")
        perp = self.perp
        with self.ledger.atomic(), self.guard:
            perp.update_state()
            quote = self.compute_underlying_to_perp_swap_amt(amt)
            if quote.amt_out <= ZERO:
                raise UnacceptableSwap(f"swap of {amt} {self.underlying} is not acceptable")

            deposit_bond = perp.get_deposit_bond()
            if deposit_bond is None:
                raise UnacceptableSwap("no deposit bond")
            senior = load_bond(self.ledger, deposit_bond).tranches[0]
            tranche_amt = perp.compute_tranche_amt_for_mint(senior, quote.amt_out + quote.perp_fee_amt)
            if tranche_amt <= ZERO:
                raise UnacceptableSwap(f"{senior} mints no notes")

            self._transfer([Move(amt, self.underlying, caller, self.wallet, f'{self.symbol}_swap')], "SWAP")
            needed = self._underlying_for_tranche_amt(deposit_bond, 0, tranche_amt)
            if needed > self._balance(self.underlying):
                raise InsufficientLiquidity(f"needs {needed} {self.underlying} to tranche")
            received = bonds.deposit(self.ledger, deposit_bond, self.wallet, needed)
            minted = perp.mint(self.wallet, senior, min(tranche_amt, received[0]))

            if quote.perp_fee_amt > ZERO:
                perp.burn(self.wallet, quote.perp_fee_amt)
            note_amt_out = min(quote.amt_out, minted.received - quote.perp_fee_amt)
            if note_amt_out <= ZERO:
                raise UnacceptableSwap(f"swap of {amt} {self.underlying} mints no notes")
            self._transfer([Move(note_amt_out, perp.symbol, self.wallet, caller, f'{self.symbol}_swap')], "SWAP")
            self._sync_assets()
            self._check_liquidity()
        if self.ledger.verbose:
            print(f"✓ SWAP {caller}: {amt} {self.underlying} -> {note_amt_out} {perp.symbol}")
        return note_amt_out

    def swap_perps_for_underlying(self, caller: str, note_amt) -> Decimal:
        """Buy notes from `caller`, paying idle underlying. The vault keeps the notes."""
        self._require_active()
        amt = to_decimal(note_amt)
        if amt <= ZERO:
            raise UnacceptableSwap("swap amount must be positive")
        perp = self.perp
        with self.ledger.atomic(), self.guard:
            perp.update_state()
            quote = self.compute_perp_to_underlying_swap_amt(amt)
            if quote.amt_out <= ZERO:
                raise UnacceptableSwap(f"swap of {amt} {perp.symbol} is not acceptable")
            if quote.amt_out > self._balance(self.underlying):
                raise InsufficientLiquidity(f"vault holds less than {quote.amt_out} {self.underlying}")

            self._transfer([
                Move(amt, perp.symbol, caller, self.wallet, f'{self.symbol}_swap'),
                Move(quote.amt_out, self.underlying, self.wallet, caller, f'{self.symbol}_swap'),
            ], "SWAP")
            if quote.perp_fee_amt > ZERO:
                perp.burn(self.wallet, quote.perp_fee_amt)
            self._sync_assets()
            self._check_liquidity()
        if self.ledger.verbose:
            print(f"✓ SWAP {caller}: {amt} {perp.symbol} -> {quote.amt_out} {self.underlying}")
        return quote.amt_out

    # ========================================================================
    # GOVERNANCE
    # ========================================================================

    def update_config(self, caller: str, **changes) -> VaultConfig:
        self.access.require_owner(caller)
        self.config = replace(self.config, **changes)
        self.ledger.emit(make_event(self.ledger.current_time, self.symbol, CONFIG_UPDATED,
                                    **{k: str(v) for k, v in changes.items()}))
        return self.config

    def update_min_deployment_amt(self, caller: str, amt) -> None:
        self.update_config(caller, min_deployment_amt=to_decimal(amt))

    def update_min_underlying_bal(self, caller: str, amt) -> None:
        self.update_config(caller, min_underlying_bal=to_decimal(amt))

    def update_min_underlying_perc(self, caller: str, perc) -> None:
        self.update_config(caller, min_underlying_perc=to_decimal(perc))

    def update_fee_policy(self, caller: str, fee_policy) -> None:
        self.access.require_owner(caller)
        if fee_policy is None:
            raise InvalidConfig("fee_policy cannot be None")
        self.fee_policy = fee_policy

    def update_market_oracle(self, caller: str, oracle) -> None:
        self.access.require_owner(caller)
        self.market_oracle = oracle

    def set_paused(self, caller: str, paused: bool) -> None:
        self.access.require_owner(caller)
        self.pause.set_paused(paused)
        self.ledger.emit(make_event(self.ledger.current_time, self.symbol, PAUSED if paused else UNPAUSED))

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.access.transfer_ownership(caller, new_owner)
        self.ledger.emit(make_event(self.ledger.current_time, self.symbol, OWNERSHIP_TRANSFERRED, owner=new_owner))

    def __repr__(self) -> str:
        return f"RolloverVault({self.symbol} over {self.perp.symbol if self.perp else None})"
