from __future__ import annotations
import logging
from typing import Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session

from shopwatch.db.model.shop import Shop

logger = logging.getLogger(__name__)

# features only the pro plan may track; a free shop with the toggle on is still blocked
PRO_ONLY_FEATURES = frozenset({"themes", "discounts", "app_permissions", "domains"})

FEATURE_COLUMNS = {
    "prices": "track_prices",
    "visibility": "track_visibility",
    "inventory": "track_inventory",
    "themes": "track_themes",
    "collections": "track_collections",
    "discounts": "track_discounts",
    "app_permissions": "track_app_permissions",
    "domains": "track_domains",
}


def get_shop(db: Session, shop: str) -> Optional[Shop]:
    return db.execute(sa.select(Shop).where(Shop.shop == shop)).scalar_one_or_none()


def get_access_token(db: Session, shop: str) -> Optional[str]:
    return db.execute(sa.select(Shop.access_token).where(Shop.shop == shop)).scalar_one_or_none()



'''
Tenant settings backed by the shops table.
Rows are cached per provider instance; one instance lives for one job.
Unknown or uninstalled shops track nothing.
'''
class DbShopSettingsProvider:

    def __init__(self, db: Session):
        self.db = db
        self._cache: Dict[str, Optional[Shop]] = {}

    def _shop(self, shop: str) -> Optional[Shop]:
        if shop not in self._cache:
            row = get_shop(self.db, shop)
            if row is not None and row.uninstalled_at is not None:
                row = None
            self._cache[shop] = row
        return self._cache[shop]

    def can_track(self, shop: str, feature: str) -> bool:
        row = self._shop(shop)
        column = FEATURE_COLUMNS.get(feature)
        if row is None or column is None:
            return False
        if feature in PRO_ONLY_FEATURES and row.plan != "pro":
            return False
        return bool(getattr(row, column))

    def low_stock_threshold(self, shop: str) -> Optional[int]:
        if not self.can_track(shop, "inventory"):
            return None
        return self._shop(shop).low_stock_threshold

    def has_instant_alerts(self, shop: str) -> bool:
        row = self._shop(shop)
        return bool(row and row.plan == "pro" and row.instant_alerts and row.alert_email)

    def alert_email(self, shop: str) -> Optional[str]:
        row = self._shop(shop)
        return row.alert_email if row else None



# previously granted scopes live on the shop row; the scopes webhook diffs against them
class DbScopeStore:

    def __init__(self, db: Session):
        self.db = db

    def granted_scopes(self, shop: str) -> Optional[List[str]]:
        scopes = self.db.execute(
            sa.select(Shop.granted_scopes).where(Shop.shop == shop)
        ).scalar_one_or_none()
        return list(scopes) if scopes else None

    def save_granted_scopes(self, shop: str, scopes: List[str]) -> None:
        result = self.db.execute(
            sa.update(Shop)
            .where(Shop.shop == shop)
            .values(granted_scopes=sorted(set(scopes)))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("shop.scopes_unknown_shop shop=%s", shop)


def list_digest_recipients(db: Session, shops: List[str]) -> Dict[str, str]:
    """shop -> alert email for installed shops that have one."""
    if not shops:
        return {}
    rows = db.execute(
        sa.select(Shop.shop, Shop.alert_email).where(
            Shop.shop.in_(shops),
            Shop.uninstalled_at.is_(None),
            Shop.alert_email.is_not(None),
        )
    ).all()
    return {shop: email for shop, email in rows if email}
