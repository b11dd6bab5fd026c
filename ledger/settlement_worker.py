import logging
import time
from collections import deque
from typing import Callable, Optional

from models import utcnow


logger = logging.getLogger(__name__)

MAX_RECENT_ERRORS = 50


class SettlementWorker:
    """
    Polls the persisted due-at index (active contracts past ``closes_at``).

    With ``auto_settle`` and a ``price_source`` due contracts are settled by
    price comparison; otherwise each is flagged once as awaiting admin
    settlement. A contract whose automatic settlement fails is flagged as
    well, so it leaves the index instead of being retried every pass.
    Contracts an admin already resolved are no longer active and never show
    up here again.
    """

    def __init__(self, ledger, price_source: Optional[Callable] = None, auto_settle: bool = False):
        self.ledger = ledger
        self.price_source = price_source
        self.auto_settle = auto_settle
        self.processed_count = 0
        self.recent_errors = deque(maxlen=MAX_RECENT_ERRORS)
        self._pass_errors = 0

    def _record_error(self, contract_id, error):
        self.ledger.store.rollback()
        self._pass_errors += 1
        self.recent_errors.append({"contract_id": contract_id, "error": str(error), "at": utcnow()})
        logger.error(f"Settlement worker failed on contract {contract_id}: {error}", exc_info=True)

    def _process(self, contract) -> str:
        if self.auto_settle and self.price_source is not None:
            contract_id = contract.id
            try:
                price = self.price_source(contract.pair)
                self.ledger.contracts.settle_contract(contract_id, exit_price=price, settled_by="auto")
                return "settled"
            except Exception as e:
                self._record_error(contract_id, e)
                logger.warning(f"Contract {contract_id} handed over to admin settlement")

        self.ledger.contracts.expire_contract(contract)
        return "expired"

    def run_once(self, now=None) -> dict:
        now = now or utcnow()
        counts = {"settled": 0, "expired": 0, "errors": 0}
        self._pass_errors = 0

        for contract in self.ledger.contracts.due_contracts(now):
            contract_id = contract.id
            try:
                counts[self._process(contract)] += 1
            except Exception as e:
                self._record_error(contract_id, e)

        counts["errors"] = self._pass_errors
        self.processed_count += counts["settled"] + counts["expired"]
        if counts["settled"] or counts["expired"] or counts["errors"]:
            logger.info(f"Settlement pass: {counts['settled']} settled, {counts['expired']} awaiting admin, "
                        f"{counts['errors']} errors")
        return counts

    def run_forever(self, interval: float = 5, stop: Optional[Callable[[], bool]] = None):
        logger.info(f"Settlement worker started (auto_settle={self.auto_settle}, interval={interval}s)")
        while not (stop and stop()):
            self.run_once()
            time.sleep(interval)
        logger.info("Settlement worker stopped")
