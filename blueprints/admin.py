#======================================================================================
#
# THIS IS ADMIN API
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


def admin_required(f):
    """
    Decorator to restrict access to admin-only routes.
    - Unauthenticated callers get the login manager's 401.
    - Authenticated non-admins get 403 Unauthorized.
    """
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not current_user.is_admin:
            logger.warning(f"Unauthorized: {current_user.uid} called admin route")
            raise Unauthorized("Administrator privileges required")
        return f(*args, **kwargs)

    return decorated_function


admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


#============================================================================================================
#     ----------------------------DASHBOARD & LISTINGS-------------------------------------------
#============================================================================================================
@admin_bp.route("/data", methods=["GET"])
@admin_required
def admin_data():
    return jsonify(get_ledger().admin.dashboard(current_user))


@admin_bp.route("/accounts", methods=["GET"])
@admin_required
def list_accounts():
    return jsonify(get_ledger().admin.accounts(current_user))


@admin_bp.route("/kyc/pending", methods=["GET"])
@admin_required
def pending_kyc():
    return jsonify(get_ledger().admin.pending_kyc(current_user))


@admin_bp.route("/deposits/pending", methods=["GET"])
@admin_required
def pending_deposits():
    return jsonify(get_ledger().admin.pending_deposits(current_user))


@admin_bp.route("/withdrawals/pending", methods=["GET"])
@admin_required
def pending_withdrawals():
    return jsonify(get_ledger().admin.pending_withdrawals(current_user))


@admin_bp.route("/trades", methods=["GET"])
@admin_required
def all_trades():
    return jsonify(get_ledger().admin.trades(current_user))


@admin_bp.route("/orders", methods=["GET"])
@admin_required
def all_orders():
    return jsonify(get_ledger().admin.orders(current_user))


@admin_bp.route("/contracts/active", methods=["GET"])
@admin_required
def active_contracts():
    return jsonify(get_ledger().admin.active_contracts(current_user))


#============================================================================================================
#     ----------------------------SETTLEMENT (password re-submitted on every call)----------------------------
#============================================================================================================
@admin_bp.route("/verify-password", methods=["POST"])
@admin_required
def verify_password():
    data = json_body()
    get_ledger().admin.verify_password(current_user, data.get("password"))
    return jsonify({"valid": True})


@admin_bp.route("/contracts/<int:contract_id>/resolve", methods=["POST"])
@admin_required
def resolve_contract(contract_id):
    data = json_body()
    contract = get_ledger().admin.resolve_contract(
        current_user, data.get("password"), contract_id, data.get("outcome"), data.get("closePrice"))
    return jsonify({"contract": contract.to_dict()})


@admin_bp.route("/deposits/<int:transaction_id>/resolve", methods=["POST"])
@admin_required
def resolve_deposit(transaction_id):
    data = json_body()
    tx = get_ledger().admin.resolve_deposit(current_user, data.get("password"), transaction_id, data.get("status"))
    return jsonify({"transaction": tx.to_dict()})


@admin_bp.route("/withdrawals/<int:transaction_id>/resolve", methods=["POST"])
@admin_required
def resolve_withdrawal(transaction_id):
    data = json_body()
    tx = get_ledger().admin.resolve_withdrawal(current_user, data.get("password"), transaction_id, data.get("status"))
    return jsonify({"transaction": tx.to_dict()})


@admin_bp.route("/accounts/<uid>/balance", methods=["POST"])
@admin_required
def set_balance(uid):
    data = json_body()
    account = get_ledger().admin.set_balance(current_user, data.get("password"), uid, data.get("balance"))
    return jsonify({"uid": account.uid, "balance": float(account.balance), "vipLevel": account.vip_level})


@admin_bp.route("/transactions", methods=["POST"])
@admin_required
def manual_transaction():
    data = json_body()
    tx = get_ledger().admin.add_manual_transaction(
        current_user,
        data.get("password"),
        data.get("userEmail"),
        data.get("type"),
        data.get("amount"),
        asset=data.get("asset"),
    )
    return jsonify({"transaction": tx.to_dict()}), 201


@admin_bp.route("/accounts/<uid>/kyc", methods=["POST"])
@admin_required
def update_kyc(uid):
    data = json_body()
    account = get_ledger().admin.update_kyc_status(current_user, data.get("password"), uid, data.get("status"))
    return jsonify({"uid": account.uid, "kycStatus": account.kyc_status})


@admin_bp.route("/settings", methods=["PUT"])
@admin_required
def update_settings():
    data = json_body()
    settings = get_ledger().admin.update_system_settings(current_user, data.get("password"), data.get("settings"))
    return jsonify(settings)


@admin_bp.route("/accounts", methods=["POST"])
@admin_required
def create_account():
    data = json_body()
    account, temporary_password = get_ledger().admin.create_account(
        current_user,
        data.get("name"),
        data.get("email"),
        password=data.get("password"),
        details=data.get("details") if isinstance(data.get("details"), dict) else None,
    )
    body = {"user": account.to_dict(include_ledger=False)}
    if temporary_password:
        body["temporaryPassword"] = temporary_password
    return jsonify(body), 201
