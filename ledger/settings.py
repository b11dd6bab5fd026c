import copy
import logging

from models import SystemSettings, VipTier
from ledger.exceptions import InvalidRequest
from ledger.tier_policy import parse_tier_table


logger = logging.getLogger(__name__)


class SettingsService:
    """The singleton system settings row plus the VIP tier table."""

    def __init__(self, store):
        self.store = store

    def ensure_defaults(self) -> SystemSettings:
        config = self.store.config
        settings = self.store.system_settings()
        if settings is None:
            settings = SystemSettings(
                deposit_addresses=copy.deepcopy(config.get("DEFAULT_DEPOSIT_ADDRESSES", {})),
                homepage_action_items=copy.deepcopy(config.get("DEFAULT_HOMEPAGE_ACTION_ITEMS", [])),
            )
            self.store.add(settings)
            logger.info("Seeded default system settings")

        if not self.store.session.query(VipTier).count():
            for row in parse_tier_table(config.get("DEFAULT_VIP_TIERS", [])):
                self.store.add(VipTier(**row))
            logger.info("Seeded default VIP tiers")

        self.store.save()
        return settings

    def as_dict(self) -> dict:
        settings = self.store.system_settings()
        return {
            "depositAddresses": dict(settings.deposit_addresses or {}) if settings else {},
            "homepageActionItems": list(settings.homepage_action_items or []) if settings else [],
            "vipTiers": [t.to_dict() if isinstance(t, VipTier) else {
                "level": t["level"],
                "depositThreshold": float(t["deposit_threshold"]),
                "tradeLimit": "unlimited" if t["trade_limit"] is None else t["trade_limit"],
            } for t in self.store.tiers()],
        }

    def update(self, changes: dict) -> bool:
        """
        Merge a partial settings payload. Returns True when the tier table
        changed so the caller can recompute account levels. Does not commit.
        """
        if not isinstance(changes, dict) or not changes:
            raise InvalidRequest("No settings to update")

        unknown = set(changes) - {"depositAddresses", "homepageActionItems", "vipTiers"}
        if unknown:
            raise InvalidRequest(f"Unknown settings: {', '.join(sorted(unknown))}")

        tiers = None
        if "vipTiers" in changes:
            tiers = parse_tier_table(changes["vipTiers"])
        if "depositAddresses" in changes and not isinstance(changes["depositAddresses"], dict):
            raise InvalidRequest("depositAddresses must be an object")
        if "homepageActionItems" in changes and not isinstance(changes["homepageActionItems"], list):
            raise InvalidRequest("homepageActionItems must be a list")

        settings = self.store.system_settings()
        if settings is None:
            settings = self.store.add(SystemSettings(deposit_addresses={}, homepage_action_items=[]))

        if "depositAddresses" in changes:
            merged = dict(settings.deposit_addresses or {})
            merged.update(changes["depositAddresses"])
            settings.deposit_addresses = merged
        if "homepageActionItems" in changes:
            settings.homepage_action_items = changes["homepageActionItems"]

        if tiers is not None:
            self.store.session.query(VipTier).delete()
            self.store.flush()
            for row in tiers:
                self.store.add(VipTier(**row))
            self.store.flush()
            logger.info(f"VIP tier table replaced with {len(tiers)} tiers")

        return tiers is not None
