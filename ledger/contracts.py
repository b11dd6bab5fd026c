"""
Second contract engine.

A contract is paid for up front (stake plus commission), sits ``active``
until its ``closes_at`` and then moves exactly once to ``won`` or ``lost``.
Settlement credits the payout, writes the Trade transaction and notifies
the owner in a single commit.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from models import (
    Account, Contract, ContractDirection, ContractStatus, NotificationKind,
    Transaction, TransactionKind, TransactionStatus, utcnow,
)
from ledger.exceptions import ContractNotFound, InsufficientFunds, InvalidRequest, TradeLimitReached
from ledger.store import AccountLockManager
from ledger.tier_policy import trade_limit_for
from ledger.validation import money, require_choice, to_amount, to_price, to_rate


logger = logging.getLogger(__name__)

DIRECTIONS = (ContractDirection.BUY.value, ContractDirection.SELL.value)
OUTCOMES = ("win", "loss")

SETTLED_BY_ADMIN = "admin"
SETTLED_BY_AUTO = "auto"


def outcome_from_prices(direction: str, entry_price, exit_price) -> str:
    """Buy wins on a rise, sell wins on a fall; an unchanged price is a loss."""
    entry = Decimal(str(entry_price))
    exit_ = Decimal(str(exit_price))
    if direction == ContractDirection.BUY.value:
        return "win" if exit_ > entry else "loss"
    return "win" if exit_ < entry else "loss"


class ContractEngine:

    def __init__(self, store):
        self.store = store

    # ==========================================================
    #                  PLACEMENT
    # ==========================================================
    def place_contract(self, account: Account, stake, direction, duration, profit_rate, commission_rate,
                       entry_price, pair: Optional[str] = None) -> Contract:
        stake = to_amount(stake, "stake")
        direction = require_choice(direction, DIRECTIONS, "direction")
        profit_rate = to_rate(profit_rate, "profitRate")
        commission_rate = to_rate(commission_rate, "commissionRate")
        entry_price = to_price(entry_price, "entryPrice")
        pair = (pair or self.store.config.get("DEFAULT_PAIR", "BTC-USDT")).upper()
        try:
            duration = int(duration)
        except (TypeError, ValueError, OverflowError):
            raise InvalidRequest("duration must be a whole number of seconds")
        max_duration = int(self.store.config.get("MAX_CONTRACT_DURATION_SECONDS", 604800))
        if duration <= 0 or duration > max_duration:
            raise InvalidRequest(f"duration must be between 1 and {max_duration} seconds")

        commission = money(stake * commission_rate)
        total_cost = stake + commission

        with AccountLockManager.locked(account.uid):
            limit = trade_limit_for(account.vip_level, self.store.tiers())
            active = len(account.active_contracts)
            if limit is not None and active >= limit:
                logger.warning(f"TradeLimitReached: {account.uid} has {active}/{limit} active contracts")
                raise TradeLimitReached(
                    f"VIP {account.vip_level} allows {limit} concurrent contract(s)")

            if Decimal(account.balance or 0) < total_cost:
                logger.warning(f"InsufficientFunds: {account.uid} cannot cover contract cost {total_cost}")
                raise InsufficientFunds(f"Insufficient balance: {total_cost} required")

            with self.store.unit_of_work():
                self.store.debit(account, total_cost)
                now = utcnow()
                contract = Contract(
                    pair=pair,
                    direction=direction,
                    stake=stake,
                    duration_seconds=duration,
                    profit_rate=profit_rate,
                    commission_rate=commission_rate,
                    entry_price=entry_price,
                    status=ContractStatus.ACTIVE.value,
                    created_at=now,
                    closes_at=now + timedelta(seconds=duration),
                )
                account.contracts.append(contract)
                self.store.add(contract)

        logger.info(f"Contract {contract.id} placed by {account.uid}: {direction} {pair} stake {stake} "
                    f"commission {commission} for {duration}s")
        return contract

    # ==========================================================
    #                  SETTLEMENT
    # ==========================================================
    def settle_contract(self, contract_id, outcome: Optional[str] = None, exit_price=None,
                        settled_by: str = SETTLED_BY_ADMIN) -> Contract:
        """
        Resolve a contract to won/lost.

        With no explicit outcome the result comes from comparing the exit
        price with the entry price. Terminal contracts are returned untouched.
        """
        if outcome is not None:
            outcome = require_choice(outcome, OUTCOMES, "outcome")
        elif exit_price is None:
            raise InvalidRequest("An outcome or an exit price is required")

        contract = self.store.get_contract(contract_id)
        account = contract.account

        with AccountLockManager.locked(account.uid):
            self.store.session.refresh(contract, with_for_update=True)
            if contract.status != ContractStatus.ACTIVE.value:
                logger.info(f"Contract {contract.id} already {contract.status}; settlement skipped")
                return contract

            if outcome is None:
                exit_price = to_price(exit_price, "exitPrice")
                outcome = outcome_from_prices(contract.direction, contract.entry_price, exit_price)
            elif exit_price is None:
                exit_price = self._synthetic_close(contract, outcome)
            else:
                exit_price = to_price(exit_price, "closePrice")

            with self.store.unit_of_work():
                self._apply_settlement(account, contract, outcome, exit_price, settled_by)

        return contract

    def _synthetic_close(self, contract: Contract, outcome: str) -> Decimal:
        """Close price nudged away from entry in the direction that matches the outcome."""
        offset = Decimal(str(self.store.config.get("ADMIN_SETTLEMENT_PRICE_OFFSET", "0.0005")))
        rises = (outcome == "win") == (contract.direction == ContractDirection.BUY.value)
        factor = Decimal("1") + offset if rises else Decimal("1") - offset
        return (Decimal(contract.entry_price) * factor).quantize(Decimal("0.00000001"))

    def _apply_settlement(self, account: Account, contract: Contract, outcome: str, exit_price, settled_by: str):
        won = outcome == "win"
        stake = Decimal(contract.stake)
        profit_rate = Decimal(contract.profit_rate)
        pnl = money(stake * profit_rate) if won else -stake
        payout = stake + pnl if won else Decimal("0.00")
        now = utcnow()

        contract.status = ContractStatus.WON.value if won else ContractStatus.LOST.value
        contract.close_price = exit_price
        contract.settled_at = now
        contract.settled_by = settled_by

        if payout > 0:
            self.store.credit(account, payout)
        else:
            self.store.refresh_vip(account)

        self.store.append_transaction(
            account,
            TransactionKind.TRADE.value,
            pnl,
            status=TransactionStatus.COMPLETED.value,
            asset=contract.pair.split("-")[-1] or self.store.default_asset,
            contract_id=contract.id,
            pair=contract.pair,
            direction=contract.direction,
            stake=stake,
            commission=contract.commission,
            entry_price=contract.entry_price,
            exit_price=exit_price,
            settlement_duration=contract.duration_seconds,
            profit_percentage=Decimal(contract.profit_rate) * 100,
            commission_percentage=Decimal(contract.commission_rate) * 100,
            created_at=contract.created_at,
            end_time=now,
        )

        verdict = "Win" if won else "Loss"
        if settled_by == SETTLED_BY_ADMIN:
            title = "Contract Settled by Admin"
            message = (f"Your contract on {contract.pair} was manually settled as a {verdict}. "
                       f"P/L: ${pnl:.2f}.")
        else:
            title = f"Contract {verdict}"
            message = f"Your {contract.duration_seconds}s contract on {contract.pair} closed as a {verdict}. P/L: ${pnl:.2f}."
        self.store.append_notification(account, title, message, NotificationKind.TRANSACTION.value)

        logger.info(f"Contract {contract.id} of {account.uid} settled {contract.status} by {settled_by}: "
                    f"pnl {pnl} payout {payout}")

    # ==========================================================
    #                  EXPIRY
    # ==========================================================
    def complete_contract(self, account: Account, contract_id, current_price=None) -> Contract:
        """
        Owner-side expiry. Before ``closes_at`` or after settlement this is a no-op.
        With auto settlement off the contract is flagged as awaiting an administrator.
        """
        contract = self.store.get_contract(contract_id)
        if contract.account_id != account.id:
            raise ContractNotFound(f"Contract {contract_id} not found")

        if contract.status != ContractStatus.ACTIVE.value or utcnow() < contract.closes_at:
            return contract

        if self.store.config.get("AUTO_SETTLE_CONTRACTS") and current_price is not None:
            return self.settle_contract(contract.id, exit_price=current_price, settled_by=SETTLED_BY_AUTO)
        return self.expire_contract(contract)

    def expire_contract(self, contract: Contract) -> Contract:
        account = contract.account
        with AccountLockManager.locked(account.uid):
            self.store.session.refresh(contract, with_for_update=True)
            if contract.status != ContractStatus.ACTIVE.value or contract.expired_at is not None:
                return contract

            with self.store.unit_of_work():
                contract.expired_at = utcnow()
                self.store.append_notification(
                    account,
                    "Contract Expired",
                    f"Your {contract.duration_seconds}s contract on {contract.pair} has expired "
                    f"and is awaiting settlement by an administrator.",
                    NotificationKind.TRANSACTION.value,
                )
        logger.info(f"Contract {contract.id} of {account.uid} expired; awaiting admin settlement")
        return contract

    # ==========================================================
    #                  LISTINGS
    # ==========================================================
    def due_contracts(self, now=None, limit: int = 100):
        """Active contracts past their close time that have not been flagged yet."""
        now = now or utcnow()
        return self.store.session.query(Contract).filter(
            Contract.status == ContractStatus.ACTIVE.value,
            Contract.closes_at <= now,
            Contract.expired_at.is_(None),
        ).order_by(Contract.closes_at).limit(limit).all()

    def active_contracts(self):
        contracts = self.store.session.query(Contract).filter(
            Contract.status == ContractStatus.ACTIVE.value
        ).order_by(Contract.id.desc()).all()
        return [c.to_dict() for c in contracts]

    def trades(self):
        trades = self.store.session.query(Transaction).filter(
            Transaction.kind == TransactionKind.TRADE.value
        ).order_by(Transaction.id.desc()).all()
        result = []
        for tx in trades:
            data = tx.to_dict()
            data.update({"userId": tx.account.uid, "userName": tx.account.name})
            result.append(data)
        return result
