from fastapi import APIRouter

router = APIRouter(tags=["Core"])


# GET /
# Gets: nothing
# Returns: basic API metadata and a map of key endpoints
# Example:
#   curl http://localhost:8000/
@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Call Santa API - personalised phone calls from Santa",
        "version": "1.0.0",
        "description": "Books, pays for, places and records Santa calls, then renders a keepsake video",
        "endpoints": {
            "create_call": "/api/calls",
            "call_status": "/api/calls/{call_id}",
            "stripe_webhook": "/api/webhooks/stripe",
            "elevenlabs_webhook": "/api/webhooks/elevenlabs",
            "cron_schedule_calls": "/api/cron/schedule-calls",
            "cron_send_reminders": "/api/cron/send-reminders",
            "cron_process_videos": "/api/cron/process-videos",
            "render_video": "/api/videos/{call_id}/render",
            "affiliates": "/api/affiliates",
        },
        "features": [
            "Stripe checkout",
            "Immediate and scheduled calls",
            "Post-call transcript and recording",
            "Keepsake video",
            "Email reminders",
            "Affiliate referral links",
        ],
    }
