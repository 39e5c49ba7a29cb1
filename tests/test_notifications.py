import json
from datetime import datetime

import httpx

from app import email_templates
from app.discord import DiscordNotifier, build_payment_message, mask_phone_number
from app.email_client import EmailClient


def email_client(handler, api_key="re_test"):
    return EmailClient(
        api_key=api_key,
        sender="Santa <santa@example.com>",
        base_url="https://api.resend.test",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_email_posts_to_resend(make_call):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_123"})

    call = make_call()
    result = email_client(handler).send_booking_confirmation(call)

    assert result.success is True
    assert result.id == "email_123"
    assert seen["url"] == "https://api.resend.test/emails"
    assert seen["auth"] == "Bearer re_test"
    assert seen["body"]["to"] == ["parent@example.com"]
    assert seen["body"]["subject"] == "Ho Ho Ho! Santa Call Confirmed for Emma!"


def test_email_provider_error_is_reported_not_raised(make_call):
    result = email_client(lambda request: httpx.Response(422, text="invalid from")).send_reminder(make_call())

    assert result.success is False
    assert result.error == "Resend API error: 422"


def test_email_transport_error_is_reported_not_raised(make_call):
    def handler(request):
        raise httpx.ConnectTimeout("timed out")

    result = email_client(handler).send_post_call(make_call(), "https://videos.test/v.mp4")

    assert result.success is False


def test_email_without_api_key_is_skipped(make_call):
    calls = []
    client = email_client(lambda request: calls.append(request) or httpx.Response(200), api_key="")

    assert client.send_reminder(make_call()).success is False
    assert calls == []


def test_booking_confirmation_for_immediate_call(make_call):
    html = email_templates.build_booking_confirmation(make_call(call_now=True, recording_purchased=True))

    assert "Right now!" in html
    assert "Included" in html


def test_templates_escape_child_name(make_call):
    html = email_templates.build_reminder(make_call(child_name="<b>Max</b>"))

    assert "<b>Max</b>" not in html
    assert "&lt;b&gt;Max&lt;/b&gt;" in html


def test_post_call_email_includes_transcript_and_links(make_call):
    call = make_call(transcript="Santa: Ho ho ho!\n\nChild: Hi!", call_duration_seconds=125)

    html = email_templates.build_post_call(call, "https://videos.test/v.mp4")

    assert "2 minutes 5 seconds" in html
    assert "Santa: Ho ho ho!" in html
    assert f"/recording/{call.id}?tab=video" in html
    assert "https://videos.test/v.mp4" in html


def test_times_render_in_booking_timezone():
    when = datetime(2026, 12, 24, 23, 0)
    assert email_templates.format_time(when, "America/New_York") == "6:00 PM EST"
    assert email_templates.format_date(when, "America/New_York") == "Thursday, December 24, 2026"


def test_unknown_timezone_falls_back_to_utc():
    assert email_templates.format_time(datetime(2026, 12, 24, 9, 5), "Mars/Olympus") == "9:05 AM UTC"


# Discord

def test_mask_phone_number():
    assert mask_phone_number("+1 234 567 8901") == "+1 ***-***-901"
    assert mask_phone_number("12") == "***"


def test_payment_message_masks_phone(make_call):
    message = build_payment_message(make_call())
    fields = {f["name"]: f["value"] for f in message["embeds"][0]["fields"]}

    assert fields["Phone"] == "+1 ***-***-567"
    assert fields["Child"] == "Emma"
    assert fields["Type"].endswith("Scheduled Call")


def test_discord_failure_returns_false(make_call):
    notifier = DiscordNotifier(
        "https://discord.test/webhook",
        http_client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )
    assert notifier.notify_payment(make_call()) is False


def test_discord_success(make_call):
    posted = []

    def handler(request):
        posted.append(json.loads(request.content))
        return httpx.Response(204)

    notifier = DiscordNotifier("https://discord.test/webhook", http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    assert notifier.notify_payment(make_call()) is True
    assert posted[0]["username"] == "Santa's Workshop"


def test_discord_unconfigured_is_skipped(make_call):
    assert DiscordNotifier("").notify_payment(make_call()) is False
