#!/usr/bin/env python3
"""
Send a store its end-of-day delivery summary.

Run daily via cron, e.g.:
    0 21 * * * cd /src && python -m scripts.daily_delivery_summary --store-id shop-1 --phone +233200000000

Sends one WhatsApp message (SMS fallback) with totals, success rate,
delivery fees collected and the top rider of the day.
"""
import argparse
import asyncio
from datetime import date
from typing import Optional

from courier.app.core.database import async_session
from courier.app.core.logging import setup_logging, get_logger
from courier.app.core.settings import get_settings
from courier.app.services.dispatch import DispatchService
from courier.app.services.messaging import HttpMessageSender
from courier.app.services.notifications import NotificationDispatcher, render_daily_summary

logger = get_logger(__name__)


async def send_summary(store_id: str, phone: str, country: str, day: Optional[date] = None) -> bool:
    async with async_session() as session:
        stats = await DispatchService(session).get_delivery_stats(store_id, day)

    completed = stats["delivered_today"]
    failed = stats["failed_today"]
    text = render_daily_summary(
        total=completed + failed,
        completed=completed,
        failed=failed,
        revenue=stats["fees_collected_today"],
        country=country,
        top_rider=stats["top_rider"],
    )
    print(f"Summary for {store_id} on {stats['day']}: {completed} delivered, {failed} failed")

    notifier = NotificationDispatcher(HttpMessageSender(), async_session)
    result = await notifier.send_text(phone, text, country)
    if result.sent:
        logger.info("Daily summary sent", store_id=store_id, channel=result.channel)
    else:
        logger.error("Daily summary not sent", store_id=store_id)
    return result.sent


def main():
    parser = argparse.ArgumentParser(description="Send the daily delivery summary to a store")
    parser.add_argument("--store-id", required=True)
    parser.add_argument("--phone", required=True, help="Store owner's phone number")
    parser.add_argument("--country", default=None, help="GH or NG; defaults to DEFAULT_COUNTRY")
    parser.add_argument("--day", type=date.fromisoformat, default=None, help="YYYY-MM-DD, defaults to today (UTC)")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.is_production)
    sent = asyncio.run(send_summary(args.store_id, args.phone, args.country or settings.DEFAULT_COUNTRY, args.day))
    raise SystemExit(0 if sent else 1)


if __name__ == "__main__":
    main()
