from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from tradebook.alerts.alert_models import AlertStatus, NewsAlert, PriceAlert, parse_alert
from tradebook.journal.journal_store import KeyedStore
from tradebook.utils.logger import get_logger

logger = get_logger(__name__)

AnyAlert = Union[PriceAlert, NewsAlert]


class AlertRepository:
    """Alert definitions on top of a keyed store, indexed by status."""

    def __init__(self, store: KeyedStore) -> None:
        self._store = store

    def add(self, alert: AnyAlert) -> AnyAlert:
        self._store.put(alert.to_dict())
        logger.info("alert_created", alert_id=alert.id, type=alert.type)
        return alert

    def get(self, alert_id: str) -> Optional[AnyAlert]:
        d = self._store.get(alert_id)
        if d is None:
            return None
        return self._parse_one(d)

    def delete(self, alert_id: str) -> bool:
        deleted = self._store.delete(alert_id)
        if deleted:
            logger.info("alert_deleted", alert_id=alert_id)
        return deleted

    def list(self, status: Optional[AlertStatus] = None) -> List[AnyAlert]:
        if status is None:
            rows = self._store.list_all()
        else:
            rows = self._store.list_by_index("status", AlertStatus(status).value)
        alerts = [a for a in (self._parse_one(d) for d in rows) if a is not None]
        return sorted(alerts, key=lambda a: a.created_at)

    def active(self) -> List[AnyAlert]:
        return self.list(AlertStatus.ACTIVE)

    def mark_triggered(self, alert: AnyAlert, when: Optional[datetime] = None) -> Optional[AnyAlert]:
        """
        Persist the active -> triggered transition. StoreError propagates.

        Returns None when the stored alert was deleted or already triggered
        since it was listed; the store is left untouched then.
        """
        updated = alert.model_copy(update={
            "status": AlertStatus.TRIGGERED,
            "triggered_at": when or datetime.now(),
        })
        if not self._store.update_if(updated.to_dict(), "status", AlertStatus.ACTIVE.value):
            logger.info("alert_transition_skipped", alert_id=alert.id)
            return None
        return updated

    def _parse_one(self, d: dict) -> Optional[AnyAlert]:
        try:
            return parse_alert(d)
        except PydanticValidationError as e:
            logger.warning("alert_record_skipped", record_id=d.get("id"), error=str(e))
            return None
