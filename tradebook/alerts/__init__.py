"""Price and news alerts: models, store, feeds, engine and polling scheduler."""

from tradebook.alerts.alert_models import AlertCondition, AlertStatus, NewsAlert, PriceAlert
from tradebook.alerts.alert_engine import AlertEngine, TickReport
from tradebook.alerts.scheduler import PollingScheduler
