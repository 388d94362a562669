import html
import logging
from typing import Any, Dict, Optional
from aiogram import Bot
from billing.database.models import Tenant

class NotificationService:
    def __init__(self, bot: Bot):
        self.bot = bot

    async def notify_tenant(self, tenant: Tenant, title: str, body: str, data: Optional[Dict[str, Any]] = None):
        """Send a notification to the tenant's Telegram chat"""
        if not tenant.tg_id:
            logging.info(f"Tenant {tenant.id} has no Telegram chat; notification '{title}' not sent")
            return
        text = f"<b>{html.escape(title)}</b>\n{html.escape(body)}"
        try:
            await self.bot.send_message(tenant.tg_id, text, parse_mode="HTML")
            logging.info(f"Notification sent to tenant {tenant.id} ({(data or {}).get('bill_number', '-')})")
        except Exception as e:
            logging.warning(f"Failed to notify tenant {tenant.id}: {e}")
            raise

    async def notify_admins(self, admin_ids: list, text: str):
        """Send notification to all admins"""
        for admin_id in admin_ids:
            try:
                await self.bot.send_message(admin_id, text, parse_mode="HTML")
            except Exception as e:
                logging.warning(f"Failed to notify admin {admin_id}: {e}")

notification_service = None

def setup_notifications(bot: Bot):
    global notification_service
    notification_service = NotificationService(bot)
