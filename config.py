# ==========================================================================================================
# -------------- Configuration file for the Fortress ledger Flask application ------------------------------
# ==========================================================================================================
import os
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name, default="False"):
    return os.getenv(name, default).lower() in ("true", "1", "t")


def _database_uri():
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'fortress.db')}"

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+pg8000://", 1)
    return database_url


class Config:

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = _env_bool("DEBUG")

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        if FLASK_ENV == "production":
            raise ValueError("SECRET_KEY must be set in production")
        SECRET_KEY = "dev_key_change_me"

    SQLALCHEMY_DATABASE_URI = _database_uri()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # ==================== LEDGER ====================
    DEFAULT_ASSET = "USDT"
    DEFAULT_PAIR = "BTC-USDT"
    VIP_MIN_BALANCE = float(os.getenv("VIP_MIN_BALANCE", "120"))
    REFERRAL_REWARD = float(os.getenv("REFERRAL_REWARD", "10"))

    MIN_SIGNUP_PASSWORD_LENGTH = 6
    MIN_PASSWORD_LENGTH = 8
    MIN_FUND_PASSWORD_LENGTH = 6

    # ==================== SETTLEMENT ====================
    # Off: expired contracts wait for an administrator to settle them.
    AUTO_SETTLE_CONTRACTS = _env_bool("AUTO_SETTLE_CONTRACTS")
    SETTLEMENT_POLL_SECONDS = int(os.getenv("SETTLEMENT_POLL_SECONDS", "5"))
    MAX_CONTRACT_DURATION_SECONDS = int(os.getenv("MAX_CONTRACT_DURATION_SECONDS", "604800"))
    ADMIN_SETTLEMENT_PRICE_OFFSET = float(os.getenv("ADMIN_SETTLEMENT_PRICE_OFFSET", "0.0005"))

    # ==================== SYSTEM SETTINGS DEFAULTS ====================
    DEFAULT_VIP_TIERS = [
        {"level": 0, "depositThreshold": -1, "tradeLimit": 0},
        {"level": 1, "depositThreshold": 0, "tradeLimit": 1},
        {"level": 2, "depositThreshold": 500, "tradeLimit": 2},
        {"level": 3, "depositThreshold": 2000, "tradeLimit": 3},
        {"level": 4, "depositThreshold": 5000, "tradeLimit": 4},
        {"level": 5, "depositThreshold": 10000, "tradeLimit": "unlimited"},
    ]

    DEFAULT_DEPOSIT_ADDRESSES = {
        "TRC20": os.getenv("DEPOSIT_ADDRESS_TRC20", "TABCDefg1234567890HIJKLMNopqrstuvwXYZ"),
        "ERC20": os.getenv("DEPOSIT_ADDRESS_ERC20", "0x1234567890abcdef1234567890abcdef12345678"),
        "BTC": os.getenv("DEPOSIT_ADDRESS_BTC", "bc1qza9876543210fedcba9876543210fedcba123"),
    }

    DEFAULT_HOMEPAGE_ACTION_ITEMS = [
        {"id": "recharge", "order": 1, "enabled": True, "label": "Recharge", "path": "/profile", "state": {"view": "deposit"}},
        {"id": "withdraw", "order": 2, "enabled": True, "label": "Withdraw", "path": "/profile", "state": {"view": "withdraw"}},
        {"id": "balance", "order": 3, "enabled": True, "label": "Balance", "path": "/profile", "state": {}},
        {"id": "support", "order": 4, "enabled": True, "label": "Support", "path": "https://t.me/FortressInvestmentSupport", "state": {}},
    ]


class TestConfig(Config):
    __test__ = False
    TESTING = True
    FLASK_ENV = "testing"
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    AUTO_SETTLE_CONTRACTS = False
