import logging
from decimal import Decimal
from typing import Optional

from models import Account, NotificationKind, Referral, ReferralStatus, utcnow
from ledger.validation import money


logger = logging.getLogger(__name__)


class ReferralEngine:
    """Referred-account bookkeeping and the one-time first deposit reward."""

    def __init__(self, store):
        self.store = store

    @property
    def reward_amount(self) -> Decimal:
        return money(self.store.config.get("REFERRAL_REWARD", 10))

    def register_referral(self, new_account: Account, referrer_code: Optional[str]) -> Optional[Referral]:
        """Link a freshly created account to its referrer; unknown codes are ignored."""
        code = (referrer_code or "").strip().upper()
        if not code:
            return None

        referrer = self.store.get_account_by_referral_code(code)
        if not referrer or referrer.id == new_account.id:
            logger.info(f"Referral code {code} not matched for {new_account.uid}")
            return None

        referral = Referral(
            referrer=referrer,
            referred=new_account,
            status=ReferralStatus.REGISTERED.value,
            reward_amount=Decimal("0.00"),
        )
        new_account.referred_by = referrer
        self.store.add(referral)
        logger.info(f"{new_account.uid} registered under referrer {referrer.uid}")
        return referral

    def grant_first_deposit_reward(self, referred_account: Account) -> Optional[Referral]:
        """Reward the referrer once, when the referred account completes its first deposit."""
        referral = self.store.session.query(Referral).filter(
            Referral.referred_id == referred_account.id
        ).with_for_update().first()

        if not referral or referral.status != ReferralStatus.REGISTERED.value:
            return None

        reward = self.reward_amount
        referrer = referral.referrer
        referral.status = ReferralStatus.DEPOSITED.value
        referral.reward_amount = reward
        referral.rewarded_at = utcnow()

        referrer.referral_rewards = money(Decimal(referrer.referral_rewards or 0) + reward)
        self.store.credit(referrer, reward)
        self.store.append_notification(
            referrer,
            "Referral Reward!",
            f"Your referral {referred_account.name} made their first deposit! "
            f"You've earned a ${reward} reward.",
            NotificationKind.SYSTEM.value,
        )
        logger.info(f"Referral reward {reward} granted to {referrer.uid} for {referred_account.uid}")
        return referral

    def summary(self, account: Account) -> dict:
        referrals = list(account.referrals)
        return {
            "referralCode": account.referral_code,
            "referredUsers": [r.to_dict() for r in referrals],
            "totalReferred": len(referrals),
            "depositedCount": sum(1 for r in referrals if r.status == ReferralStatus.DEPOSITED.value),
            "totalRewards": float(account.referral_rewards or 0),
        }
