# scheduler/reporter.py
import asyncio
import os
import html as html_lib
from datetime import datetime, timezone
import logging
import pandas as pd

from crawler.config import VINE_URL, RECOMMENDATIONS_LOG, REPORT_DIR
from utils import alerts

logger = logging.getLogger("reporter")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)


def build_html(items):
    """Render appealing items as a simple HTML table with thumbnails and links."""
    esc = html_lib.escape
    rows = []
    for it in items:
        img = (
            f'<img src="{esc(it.image_url)}" alt="" width="120" height="120" '
            f'style="object-fit:contain; margin-right:12px; float:left;" />'
            if it.image_url
            else ""
        )
        rows.append(
            f"""
    <tr>
      <td style="padding:12px; border-bottom:1px solid #eee; vertical-align:top;">
        {img}
        <div>
          <a href="{esc(it.url)}" style="font-size:16px; color:#007185;">{esc(it.name)}</a>
          <br/>
          <a href="{esc(it.url)}" style="font-size:12px; color:#0066c0;">View on Amazon</a>
        </div>
      </td>
    </tr>"""
        )
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Vine recommendations</title></head>
<body style="font-family: Arial, sans-serif; max-width: 640px; margin: 0 auto;">
  <h2>Amazon Vine: items you might like</h2>
  <p>These items matched your preferences from this scan.</p>
  <p><a href="{VINE_URL}" style="color:#0066c0;">Open Amazon Vine</a></p>
  <table style="width:100%; border-collapse: collapse;">{"".join(rows)}
  </table>
  <p style="margin-top:24px; font-size:12px; color:#666;">Sent by Vine Monitor</p>
</body>
</html>"""


def build_text(items):
    """
    Render the plain-text alternative of the recommendation email.

    Args:
        items (list[Item]): Appealing items

    Returns:
        str: One name-and-link block per item
    """
    return "\n\n".join(f"{it.name}\n{it.url}" for it in items)


def log_recommendations(items, path=RECOMMENDATIONS_LOG):
    """
    Append appealing items to a plain log file.

    Keeps a record of every recommendation even when email delivery fails.
    """
    now = datetime.now(timezone.utc).isoformat()
    lines = [f"\n--- {now} ({len(items)} appealing item(s)) ---"]
    for it in items:
        lines.append(f"- [{it.asin}] {it.name}\n  {it.url}")
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
    except OSError as e:
        logger.error(f"Failed to write recommendations log {path}: {e}")
        return
    logger.info(f"Recommendations logged to {path}")


def write_report(items, report_dir=REPORT_DIR):
    """Write appealing items to a timestamped CSV report and return its path."""
    os.makedirs(report_dir, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H%M%SZ")
    csv_path = os.path.join(report_dir, f"recommendations_{stamp}.csv")
    pd.DataFrame(
        [
            {
                "asin": it.asin,
                "section": it.section,
                "name": it.name,
                "url": it.url,
                "image_url": it.image_url,
                "seen_at": it.seen_at.isoformat(),
            }
            for it in items
        ]
    ).to_csv(csv_path, index=False)
    return csv_path


async def notify_recommendations(result):
    """
    Send one consolidated notification for a finished cycle.

    Runs after the cycle has been committed. Delivery failures are logged
    and do not undo the suggestion flags already written.

    Returns:
        bool: True when an email was sent
    """
    items = result.appealing_items
    if not items:
        logger.info(f"No appealing items among {result.new_item_count} new item(s); no email.")
        return False

    log_recommendations(items, RECOMMENDATIONS_LOG)
    csv_path = write_report(items, REPORT_DIR)
    subject = f"Amazon Vine: {len(items)} item(s) you might like"
    try:
        await asyncio.to_thread(
            alerts.send_alert,
            subject,
            build_text(items),
            build_html(items),
            [csv_path],
        )
    except Exception as e:
        logger.error(f"Recommendation email failed ({len(items)} item(s)): {e}")
        return False
    logger.info(f"Recommendation email sent for {len(items)} item(s).")
    return True
