"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

api_requests_total = Counter("api_requests_total", "Total API requests", ["method", "endpoint", "status"])
api_request_duration = Histogram("api_request_duration_seconds", "API request duration")
calls_dispatched = Counter("calls_dispatched_total", "Outbound call dispatch attempts", ["source", "outcome"])
webhook_events = Counter("webhook_events_total", "Provider webhook events received", ["provider", "type"])
videos_rendered = Counter("videos_rendered_total", "Video render attempts", ["outcome"])
emails_sent = Counter("emails_sent_total", "Transactional emails", ["kind", "outcome"])
