import os
import logging
from dotenv import load_dotenv

load_dotenv()

class Config:
    # Bot Token (OPTIONAL - only needed to deliver tenant reminders)
    BOT_TOKEN = os.getenv("BOT_TOKEN")

    # Database Configuration
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASS = os.getenv("DB_PASS", "postgres")
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "tenancy_billing")

    @property
    def DATABASE_URL(self):
        # Prefer DATABASE_URL env var if set (for SQLite support)
        url = os.getenv("DATABASE_URL")
        if url:
            return url

        # Build PostgreSQL URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Operational day. All "today" comparisons use this zone, not UTC midnight.
    TIMEZONE = os.getenv("TIMEZONE", "Asia/Ho_Chi_Minh")

    # Billing rules
    PAYMENT_DUE_DAYS = int(os.getenv("PAYMENT_DUE_DAYS", "10"))
    EXTENSION_DAYS = int(os.getenv("EXTENSION_DAYS", "5"))
    SERVICE_FEE_MIN_DAYS = int(os.getenv("SERVICE_FEE_MIN_DAYS", "20"))
    READING_RETENTION_MONTHS = int(os.getenv("READING_RETENTION_MONTHS", "3"))
    REMINDER_WINDOW_DAYS = int(os.getenv("REMINDER_WINDOW_DAYS", "2"))

    # Daily job time (local)
    SCHEDULER_HOUR = int(os.getenv("SCHEDULER_HOUR", "9"))

config = Config()

# Log configuration on startup
logging.info(f"Database: {config.DATABASE_URL.split('@')[1] if '@' in config.DATABASE_URL else 'SQLite'}")
logging.info(f"Billing timezone: {config.TIMEZONE}")
logging.info(f"Telegram reminders: {'enabled' if config.BOT_TOKEN else 'disabled'}")
