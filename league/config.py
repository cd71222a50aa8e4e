"""League configuration constants and settings."""

import os

COOLDOWN_HOURS = int(os.getenv("COOLDOWN_HOURS", "24"))
CHALLENGE_TTL_HOURS = int(os.getenv("CHALLENGE_TTL_HOURS", "24"))
EXPIRING_SOON_HOURS = 2

CLOSE_FIGHT_THRESHOLD = 10.0
DOMINANT_MARGIN = 50.0
UPSET_SURPRISE = 0.8
WIN_PROBABILITY_SCALE = float(os.getenv("WIN_PROBABILITY_SCALE", "10.0"))

MIN_DEADLINESS = 0.0
MAX_DEADLINESS = 100.0

LEADERBOARD_MIN_FIGHTS = 3
LEADERBOARD_SIZE = 10

# Spider image limits
MAX_IMAGE_MB = 10.0
MIN_IMAGE_SIDE = 100
MAX_IMAGE_SIDE = 4000
IMAGE_CONTENT_TYPE = "image/jpeg"

STORE_MAX_RETRIES = int(os.getenv("STORE_MAX_RETRIES", "3"))
STORE_RETRY_BASE_SECONDS = float(os.getenv("STORE_RETRY_BASE_SECONDS", "0.5"))

SWEEP_INTERVAL_MINUTES = 15
TIMEZONE = os.getenv("TIMEZONE", "UTC")

DATABASE_PATH = os.getenv("DATABASE_PATH", "spider_league.db")
BLOB_ROOT = os.getenv("BLOB_ROOT", "blobs")
BLOB_BASE_URL = os.getenv("BLOB_BASE_URL", "file://")

# Document collections
USERS = "users"
SPIDERS = "spiders"
CHALLENGES = "challenges"
FIGHTS = "fights"
SETTINGS = "settings"
