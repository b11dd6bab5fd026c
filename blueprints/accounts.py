#======================================================================================
#
#  ACCOUNT ROUTES: wallet, funding requests, contracts, KYC and security
#
#=======================================================================================
from functools import wraps
import logging

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from ledger.exceptions import Unauthorized
from ledger.service import get_ledger
from utils import json_body


logger = logging.getLogger(__name__)

bp = Blueprint("accounts", __name__, url_prefix="")


def owner_or_admin(f):
    """
    Resolve ``uid`` to an account the current user may act on.
    The wrapped view receives the Account in place of the uid.
    """
    @wraps(f)
    @login_required
    def decorated_function(uid, *args, **kwargs):
        if current_user.uid != uid and not current_user.is_admin:
            logger.warning(f"Unauthorized: {current_user.uid} tried to access {uid}")
            raise Unauthorized("You can only access your own account")
        account = get_ledger().store.get_account(uid)
        return f(account, *args, **kwargs)

    return decorated_function


@bp.route("/settings", methods=["GET"])
def public_settings():
    return jsonify(get_ledger().settings.as_dict())


@bp.route("/accounts/<uid>", methods=["GET"])
@owner_or_admin
def account_snapshot(account):
    return jsonify(get_ledger().accounts.snapshot(account))


#============================================================================================================
#     ----------------------------DEPOSITS & WITHDRAWALS-------------------------------------------
#============================================================================================================
@bp.route("/accounts/<uid>/deposits", methods=["POST"])
@owner_or_admin
def request_deposit(account):
    data = json_body()
    tx = get_ledger().funding.request_deposit(
        account,
        data.get("amount"),
        data.get("network"),
        proof=data.get("proof"),
        asset=data.get("asset"),
    )
    return jsonify({"transactionId": tx.id, "status": tx.status, "transaction": tx.to_dict()}), 201


@bp.route("/accounts/<uid>/withdrawals", methods=["POST"])
@owner_or_admin
def request_withdrawal(account):
    data = json_body()
    tx = get_ledger().funding.request_withdrawal(
        account,
        data.get("amount"),
        data.get("address"),
        data.get("password"),
        asset=data.get("asset"),
    )
    return jsonify({"transactionId": tx.id, "status": tx.status, "transaction": tx.to_dict()}), 201


#============================================================================================================
#     ----------------------------SECOND CONTRACTS-------------------------------------------
#============================================================================================================
@bp.route("/accounts/<uid>/contracts", methods=["POST"])
@owner_or_admin
def place_contract(account):
    data = json_body()
    contract = get_ledger().contracts.place_contract(
        account,
        stake=data.get("amount", data.get("stake")),
        direction=data.get("direction", data.get("type")),
        duration=data.get("duration"),
        profit_rate=data.get("profitRate"),
        commission_rate=data.get("commissionRate", 0),
        entry_price=data.get("entryPrice"),
        pair=data.get("pair"),
    )
    return jsonify({
        "contractId": contract.id,
        "contract": contract.to_dict(),
        "balance": float(account.balance),
    }), 201


@bp.route("/accounts/<uid>/contracts/<int:contract_id>/complete", methods=["POST"])
@owner_or_admin
def complete_contract(account, contract_id):
    data = json_body(required=False)
    contract = get_ledger().contracts.complete_contract(account, contract_id, data.get("currentPrice"))
    return jsonify({"contract": contract.to_dict()})


#============================================================================================================
#     ----------------------------KYC, SECURITY, NOTIFICATIONS, REFERRALS-------------------------------------
#============================================================================================================
@bp.route("/accounts/<uid>/kyc", methods=["POST"])
@owner_or_admin
def submit_kyc(account):
    data = json_body()
    get_ledger().accounts.submit_kyc(
        account,
        full_name=data.get("fullName"),
        date_of_birth=data.get("dateOfBirth"),
        country=data.get("country"),
        address=data.get("address"),
        id_front=data.get("idFront"),
        id_back=data.get("idBack"),
    )
    return jsonify({"kycStatus": account.kyc_status})


@bp.route("/accounts/<uid>/password", methods=["POST"])
@owner_or_admin
def change_password(account):
    data = json_body()
    get_ledger().accounts.change_password(account, data.get("currentPassword"), data.get("newPassword"))
    return jsonify({"message": "Password updated"})


@bp.route("/accounts/<uid>/fund-password", methods=["POST"])
@owner_or_admin
def set_fund_password(account):
    data = json_body()
    get_ledger().accounts.set_fund_password(account, data.get("loginPassword"), data.get("fundPassword"))
    return jsonify({"message": "Fund password updated"})


@bp.route("/accounts/<uid>/notifications/read", methods=["POST"])
@owner_or_admin
def mark_notifications_read(account):
    data = json_body(required=False)
    updated = get_ledger().accounts.mark_notifications_read(account, data.get("notificationId"))
    return jsonify({"updated": updated})


@bp.route("/accounts/<uid>/referrals", methods=["GET"])
@owner_or_admin
def referrals(account):
    return jsonify(get_ledger().referrals.summary(account))
