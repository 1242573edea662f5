# config.py
import os

from dotenv import load_dotenv

load_dotenv()

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
DB_URL = os.getenv("DB_URL", "sqlite:///reminders.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Scheduler
MISSED_THRESHOLD_MINUTES = int(os.getenv("MISSED_THRESHOLD_MINUTES", "30"))
DISPATCH_CONCURRENCY = int(os.getenv("DISPATCH_CONCURRENCY", "8"))
DELIVERY_TIMEOUT_SECONDS = float(os.getenv("DELIVERY_TIMEOUT_SECONDS", "10"))
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "UTC")
WEEKLY_REPORT_DAY = os.getenv("WEEKLY_REPORT_DAY", "mon")
WEEKLY_REPORT_HOUR = int(os.getenv("WEEKLY_REPORT_HOUR", "9"))
