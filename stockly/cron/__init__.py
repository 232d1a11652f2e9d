"""Alert cron — scheduled evaluation and delivery of price alerts."""

from stockly.cron.alerts_cron import AlertCron, CronRunSummary
from stockly.cron.factory import AlertCronStack, create_alert_cron, create_kv_store
from stockly.cron.scheduler import CronScheduler
from stockly.cron.working_hours import current_hour, is_within_working_hours

__all__ = [
    "AlertCron",
    "AlertCronStack",
    "CronRunSummary",
    "CronScheduler",
    "create_alert_cron",
    "create_kv_store",
    "current_hour",
    "is_within_working_hours",
]
