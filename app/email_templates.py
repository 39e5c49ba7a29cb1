"""HTML email generation.

Handles:
- HTML escaping for every value that came from a booking form or a provider
- Date/time formatting in the booking's own timezone
- One shared layout (header, footer) for all messages
"""

from __future__ import annotations

from datetime import datetime, timezone
from html import escape
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import config
from app.db_models import DBCall, utcnow

_STYLES = {
    "container": "font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; background: #ffffff;",
    "header": "background: linear-gradient(135deg, #C41E3A 0%, #8B0000 100%); padding: 40px 20px; text-align: center;",
    "header_title": "color: #ffffff; font-size: 28px; margin: 0; font-weight: bold;",
    "header_subtitle": "color: #FFD700; font-size: 16px; margin-top: 8px;",
    "content": "padding: 40px 30px;",
    "card": "background: #f8f9fa; border-radius: 12px; padding: 24px; margin: 20px 0;",
    "button": "display: inline-block; background: #FFD700; color: #333; padding: 14px 32px; text-decoration: none; border-radius: 8px; font-weight: 600; font-size: 16px;",
    "footer": "background: #f8f9fa; padding: 30px; text-align: center; border-top: 1px solid #eee;",
    "footer_text": "color: #888; font-size: 12px; margin: 0;",
}


def _local_time(value: datetime, tz_name: str | None) -> datetime:
    """Convert a stored naive-UTC timestamp to the booking's timezone (UTC if unknown)."""
    aware = value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value
    try:
        return aware.astimezone(ZoneInfo(tz_name or "UTC"))
    except (ZoneInfoNotFoundError, ValueError):
        return aware


def format_date(value: datetime, tz_name: str | None = None) -> str:
    local = _local_time(value, tz_name)
    return f"{local:%A}, {local:%B} {local.day}, {local.year}"


def format_time(value: datetime, tz_name: str | None = None) -> str:
    local = _local_time(value, tz_name)
    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{hour}:{local:%M} {suffix} {local.tzname() or ''}".strip()


def format_duration(seconds: int | None) -> str:
    if not seconds:
        return ""
    return f"{seconds // 60} minutes {seconds % 60} seconds"


def recording_page_url(call_id: str, tab: str | None = None) -> str:
    url = f"{config.APP_URL.rstrip('/')}/recording/{call_id}"
    return f"{url}?tab={tab}" if tab else url


def _layout(content: str) -> str:
    year = utcnow().year
    support = escape(config.SUPPORT_EMAIL)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Call Santa</title>
</head>
<body style="margin: 0; padding: 0; background: #f5f5f5;">
  <div style="{_STYLES['container']}">
    {content}
    <div style="{_STYLES['footer']}">
      <p style="{_STYLES['footer_text']}">&copy; {year} Call Santa. Spreading Christmas magic!</p>
      <p style="{_STYLES['footer_text']} margin-top: 10px;">
        Questions? Contact us at <a href="mailto:{support}" style="color: #C41E3A;">{support}</a>
      </p>
    </div>
  </div>
</body>
</html>
"""


def _header(icon: str, title: str, subtitle: str) -> str:
    return f"""<div style="{_STYLES['header']}">
      <span style="font-size: 24px;">{icon}</span>
      <h1 style="{_STYLES['header_title']}">{title}</h1>
      <p style="{_STYLES['header_subtitle']}">{subtitle}</p>
    </div>"""


def booking_confirmation_subject(call: DBCall) -> str:
    return f"Ho Ho Ho! Santa Call Confirmed for {call.child_name}!"


def build_booking_confirmation(call: DBCall) -> str:
    """Sent once after the booking payment succeeds."""
    name = escape(call.child_name)
    when = (
        "Right now! Keep the phone nearby."
        if call.call_now
        else f"{format_date(call.scheduled_at, call.timezone)} at {format_time(call.scheduled_at, call.timezone)}"
    )
    recording_row = (
        '<tr><td style="padding: 8px 0; color: #666;">Recording:</td>'
        '<td style="padding: 8px 0; color: #165B33; font-weight: 500;">&#10003; Included</td></tr>'
        if call.recording_purchased
        else ""
    )
    content = f"""{_header("&#10052;", "Ho Ho Ho! Booking Confirmed!", f"Santa has received the call request for {name}")}
    <div style="{_STYLES['content']}">
      <p style="font-size: 16px; color: #333; line-height: 1.6;">
        Great news! Your Santa call booking has been confirmed. {name} is in for a magical experience!
      </p>
      <div style="{_STYLES['card']}">
        <h3 style="margin: 0 0 16px; color: #C41E3A; font-size: 18px;">Call Details</h3>
        <table style="width: 100%; border-collapse: collapse;">
          <tr><td style="padding: 8px 0; color: #666; width: 130px;">Child's Name:</td><td style="padding: 8px 0; color: #333; font-weight: 500;">{name}</td></tr>
          <tr><td style="padding: 8px 0; color: #666;">When:</td><td style="padding: 8px 0; color: #333; font-weight: 500;">{escape(when)}</td></tr>
          <tr><td style="padding: 8px 0; color: #666;">Phone Number:</td><td style="padding: 8px 0; color: #333; font-weight: 500;">{escape(call.phone_number)}</td></tr>
          {recording_row}
        </table>
      </div>
      <h3 style="color: #333; font-size: 18px; margin-top: 30px;">What Happens Next?</h3>
      <ol style="color: #555; line-height: 1.8; padding-left: 20px;">
        <li>Make sure the phone is available at the scheduled time</li>
        <li>Santa will call from our special North Pole number</li>
        <li>After the call, you'll receive the transcript, recording and a shareable video by email</li>
      </ol>
      <p style="text-align: center; color: #888; font-size: 14px;">We can't wait for {name} to talk to Santa! &#127877;</p>
    </div>"""
    return _layout(content)


def reminder_subject(call: DBCall) -> str:
    return f"Reminder: Santa is calling {call.child_name} in 1 hour!"


def build_reminder(call: DBCall) -> str:
    """Sent about one hour before a scheduled call."""
    name = escape(call.child_name)
    when = escape(format_time(call.scheduled_at, call.timezone))
    content = f"""{_header("&#128276;", "Santa's Calling Soon!", f"Just 1 hour until {name}'s call with Santa")}
    <div style="{_STYLES['content']}">
      <p style="font-size: 18px; color: #333; text-align: center; line-height: 1.6;">
        Get ready! Santa will be calling <strong>{name}</strong> in about <strong>1 hour</strong>!
      </p>
      <div style="background: #FFF8E7; border: 2px solid #FFD700; border-radius: 12px; padding: 24px; margin: 24px 0; text-align: center;">
        <p style="margin: 0; font-size: 14px; color: #B8860B;">SCHEDULED TIME</p>
        <p style="margin: 8px 0 0; font-size: 28px; color: #333; font-weight: bold;">{when}</p>
      </div>
      <div style="{_STYLES['card']}">
        <h3 style="margin: 0 0 16px; color: #C41E3A; font-size: 16px;">Quick Checklist</h3>
        <ul style="margin: 0; padding-left: 20px; color: #555; line-height: 2;">
          <li>Make sure the phone (<strong>{escape(call.phone_number)}</strong>) is charged and nearby</li>
          <li>Find a quiet space where {name} can talk</li>
          <li>Get {name} excited - Santa's about to call!</li>
        </ul>
      </div>
    </div>"""
    return _layout(content)


def post_call_subject(call: DBCall) -> str:
    return f"Santa's Call with {call.child_name} - Recording & Video Ready!"


def build_post_call(call: DBCall, video_url: str) -> str:
    """Recording and video links, plus the transcript when we have one."""
    name = escape(call.child_name)
    duration = format_duration(call.call_duration_seconds)
    duration_line = f'<p style="color: #666; font-size: 14px;">Call duration: {duration}</p>' if duration else ""
    transcript_block = ""
    if call.transcript:
        transcript_block = f"""<div style="background: #f8f9fa; border-left: 4px solid #C41E3A; padding: 24px; margin: 24px 0; border-radius: 0 8px 8px 0;">
        <h3 style="margin: 0 0 16px; color: #C41E3A; font-size: 16px;">&#128221; Call Transcript</h3>
        <div style="color: #444; line-height: 1.8; white-space: pre-wrap; font-size: 14px;">{escape(call.transcript)}</div>
      </div>"""

    content = f"""{_header("&#127877;", f"Santa Called {name}!", "Your recording &amp; video are ready!")}
    <div style="{_STYLES['content']}">
      <p style="font-size: 16px; color: #333; line-height: 1.6;">Ho ho ho! Santa just finished a wonderful conversation with {name}!</p>
      {duration_line}
      <div style="background: #165B33; color: #ffffff; padding: 24px; border-radius: 12px; margin: 24px 0; text-align: center;">
        <p style="margin: 0 0 16px; font-size: 14px;">&#127908; Audio Recording</p>
        <a href="{escape(recording_page_url(call.id))}" style="{_STYLES['button']}">Download Recording</a>
      </div>
      <div style="{_STYLES['header']} border-radius: 12px; margin: 24px 0;">
        <p style="margin: 0 0 8px; font-size: 20px; color: #ffffff;">&#127916; Shareable Video Ready!</p>
        <p style="margin: 0 0 16px; font-size: 14px; color: #ffffff;">Share {name}'s magical moment with family!</p>
        <a href="{escape(recording_page_url(call.id, tab='video'))}" style="{_STYLES['button']}">Download Video</a>
        <p style="margin: 12px 0 0; font-size: 12px;"><a href="{escape(video_url)}" style="color: #FFD700;">Direct video link</a></p>
      </div>
      {transcript_block}
      <p style="text-align: center; color: #888; font-size: 14px;">Thank you for choosing Call Santa! We hope this brought joy to your holiday. &#10052;</p>
    </div>"""
    return _layout(content)
