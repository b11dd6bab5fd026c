from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
import logging

from ledger.service import get_ledger
from utils import client_ip, json_body


logger = logging.getLogger(__name__)
#==================================================================================================================

bp = Blueprint("auth", __name__, url_prefix="")


#===========================================================================
#      SIGN UP ROUTE.
#==============================================================================
@bp.route("/api/signup", methods=["POST"])
def signup():
    """Create a new account, register its referrer and start a session."""
    data = json_body()
    details = data.get("details") or {}
    if not isinstance(details, dict):
        details = {}

    ledger = get_ledger()
    account = ledger.accounts.create_account(
        name=data.get("name") or data.get("fullName"),
        email=data.get("email"),
        password=data.get("password") or "",
        details=details,
        referral_code=data.get("referralCode"),
    )
    login_user(account)

    return jsonify({
        "message": "Account created successfully",
        "user": ledger.accounts.snapshot(account),
    }), 201


#===========================================================================
#      LOGIN / LOGOUT
#==============================================================================
@bp.route("/api/login", methods=["POST"])
def login():
    data = json_body()
    ledger = get_ledger()
    account = ledger.accounts.authenticate(
        data.get("email"),
        data.get("password") or "",
        ip_address=client_ip(),
        device=request.headers.get("User-Agent"),
    )
    login_user(account, remember=bool(data.get("remember")))
    return jsonify({"message": "Login successful", "user": ledger.accounts.snapshot(account)})


@bp.route("/api/logout", methods=["POST"])
@login_required
def logout():
    logger.info(f"Account {current_user.uid} logged out")
    logout_user()
    return jsonify({"message": "Logged out"})


@bp.route("/session", methods=["GET"])
@login_required
def session_info():
    return jsonify({"user": get_ledger().accounts.snapshot(current_user)})
