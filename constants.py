import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

REDIS_URL = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}" if REDIS_PASSWORD else f"redis://{REDIS_HOST}:{REDIS_PORT}"

# Mirror room occupancy into Redis so other instances / ops tooling can see it
PRESENCE_ENABLED = os.getenv("PRESENCE_ENABLED", "true").lower() in ("1", "true", "yes")
PRESENCE_TTL_SECONDS = int(os.getenv("PRESENCE_TTL_SECONDS", 3600))

# 0 disables idle suspension of room actors
ROOM_IDLE_SUSPEND_SECONDS = float(os.getenv("ROOM_IDLE_SUSPEND_SECONDS", 0))
ROOM_SWEEP_INTERVAL_SECONDS = float(os.getenv("ROOM_SWEEP_INTERVAL_SECONDS", 30))

ROOM_CAPACITY = 2
RELAY_PATH = "/websocket"
MAX_ROOM_NAME_LENGTH = 32
PEER_DISCONNECTED_REASON = "Peer disconnected"
SETUP_FAILED_REASON = "Uncaught exception during session setup"

CLOSE_NORMAL = 1000
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013

# A peer that can't take a relayed frame within this window counts as disconnected
RELAY_SEND_TIMEOUT_SECONDS = float(os.getenv("RELAY_SEND_TIMEOUT_SECONDS", 1.0))
