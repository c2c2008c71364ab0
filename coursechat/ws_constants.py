"""WebSocket protocol constants: message types, handshake parameters, close codes.

Pure data module -- no imports, no logic. Safe to import from any
coursechat module without risk of circular dependencies.
"""

# ── Handshake query parameters ────────────────────────────────────────

PARAM_TOKEN = "token"
PARAM_COURSE_ID = "courseId"
PARAM_VIDEO_ID = "videoId"

# ── Server -> Client message types ────────────────────────────────────

MSG_HISTORY = "history"
MSG_MESSAGE = "message"

# ── Close codes (application range 4000-4999) ────────────────────────

CLOSE_HANDSHAKE_ERROR = 4400
CLOSE_UNAUTHORIZED = 4401

# ── Close codes (standard range) ─────────────────────────────────────

# Server gave up on a client that failed or stalled a send
CLOSE_SEND_FAILED = 1011
