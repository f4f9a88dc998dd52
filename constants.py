import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

if REDIS_PASSWORD:
    _DEFAULT_REDIS_URL = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"
else:
    _DEFAULT_REDIS_URL = f"redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"
REDIS_URL = os.getenv("REDIS_URL", _DEFAULT_REDIS_URL)

# Number of keys put in the pool by init()
KEY_POOL_SIZE = int(os.getenv("KEY_POOL_SIZE", 5))
# Keys shorter than 6 characters collide too easily
MIN_KEY_LENGTH = 6
KEY_LENGTH = max(int(os.getenv("KEY_LENGTH", MIN_KEY_LENGTH)), MIN_KEY_LENGTH)

ROOM_EVENTS_CHANNEL = os.getenv("ROOM_EVENTS_CHANNEL", "roomEvents")

# init() flushes the whole database, only enable on a single instance
RESET_ON_STARTUP = os.getenv("RESET_ON_STARTUP", "true").lower() in ("1", "true", "yes")
