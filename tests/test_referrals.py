from decimal import Decimal

from models import Referral, ReferralStatus


def _deposit(ledger, account, amount):
    tx = ledger.funding.request_deposit(account, amount, "TRC20")
    ledger.funding.resolve_deposit(tx.id, "Completed")
    return tx


def test_first_deposit_rewards_referrer(ledger, make_account):
    referrer = make_account(balance=50, uid="UID-123456")
    assert referrer.referral_code == "REF123456"
    referred = make_account(referral_code="REF123456")

    _deposit(ledger, referred, 200)

    assert referrer.referral_rewards == Decimal("10.00")
    assert referrer.balance == Decimal("60.00")
    entry = referrer.referrals[0]
    assert entry.referred_id == referred.id
    assert entry.status == ReferralStatus.DEPOSITED.value
    assert entry.reward_amount == Decimal("10.00")
    assert referrer.notifications[0].title == "Referral Reward!"
    assert referred.balance == Decimal("200.00")


def test_reward_is_granted_once(ledger, make_account):
    referrer = make_account()
    referred = make_account(referral_code=referrer.referral_code)

    _deposit(ledger, referred, 100)
    _deposit(ledger, referred, 300)

    assert referrer.referral_rewards == Decimal("10.00")
    assert referrer.balance == Decimal("10.00")
    assert ledger.referrals.grant_first_deposit_reward(referred) is None


def test_failed_deposit_does_not_reward(ledger, make_account):
    referrer = make_account()
    referred = make_account(referral_code=referrer.referral_code)
    tx = ledger.funding.request_deposit(referred, 100, "BTC")
    ledger.funding.resolve_deposit(tx.id, "Failed")

    assert referrer.referral_rewards == Decimal("0.00")
    assert referrer.referrals[0].status == ReferralStatus.REGISTERED.value

    _deposit(ledger, referred, 50)
    assert referrer.referral_rewards == Decimal("10.00")


def test_registration_links_accounts(ledger, make_account):
    referrer = make_account()
    referred = make_account(referral_code=f"  {referrer.referral_code.lower()} ")

    assert referred.referred_by_id == referrer.id
    referral = ledger.store.session.query(Referral).filter_by(referred_id=referred.id).one()
    assert referral.status == ReferralStatus.REGISTERED.value
    assert referral.reward_amount == Decimal("0.00")


def test_unknown_code_is_ignored(ledger, make_account):
    account = make_account(referral_code="REFNOPE")
    assert account.referred_by_id is None
    assert ledger.store.session.query(Referral).count() == 0


def test_account_without_referrer_deposits_normally(ledger, make_account):
    account = make_account()
    _deposit(ledger, account, 150)
    assert account.balance == Decimal("150.00")
    assert ledger.referrals.grant_first_deposit_reward(account) is None


def test_summary(ledger, make_account):
    referrer = make_account()
    first = make_account(referral_code=referrer.referral_code)
    make_account(referral_code=referrer.referral_code)
    _deposit(ledger, first, 100)

    summary = ledger.referrals.summary(referrer)
    assert summary["referralCode"] == referrer.referral_code
    assert summary["totalReferred"] == 2
    assert summary["depositedCount"] == 1
    assert summary["totalRewards"] == 10.0
