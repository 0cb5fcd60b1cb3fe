"""
Runtime knobs for the order service that are not database related.
Everything is read once at import time from the environment (or .env).
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Write routes (create / transition) are limited per tenant
TRANSITION_RATE_LIMIT = os.getenv("TRANSITION_RATE_LIMIT", "120/minute")

# Events buffered per dashboard connection before it is dropped as too slow
BROADCAST_QUEUE_SIZE = int(os.getenv("BROADCAST_QUEUE_SIZE", "256"))

# Page sizes the dashboard offers
ALLOWED_PAGE_SIZES = (10, 25, 50, 75)
DEFAULT_PAGE_SIZE = 10

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

OTEL_ENABLED = os.getenv("OTEL_ENABLED", "true").lower() == "true"
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "http://localhost:4317")

# Business timezone used for date-range summaries
SUMMARY_TIMEZONE = os.getenv("SUMMARY_TIMEZONE", "Asia/Kolkata")
