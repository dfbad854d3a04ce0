# Matrix client-server protocol constants used by the intent layer

# Event types
EV_MEMBER = "m.room.member"
EV_POWER_LEVELS = "m.room.power_levels"
EV_ROOM_NAME = "m.room.name"
EV_ROOM_TOPIC = "m.room.topic"
EV_ROOM_AVATAR = "m.room.avatar"
EV_MESSAGE = "m.room.message"

# Membership values. MEMBERSHIP_NONE is local only; servers never send it.
MEMBERSHIP_NONE = ""
MEMBERSHIP_JOIN = "join"
MEMBERSHIP_INVITE = "invite"
MEMBERSHIP_LEAVE = "leave"
MEMBERSHIP_BAN = "ban"

MEMBERSHIPS = (
    MEMBERSHIP_NONE,
    MEMBERSHIP_JOIN,
    MEMBERSHIP_INVITE,
    MEMBERSHIP_LEAVE,
    MEMBERSHIP_BAN,
)

# Message types
MSG_TEXT = "m.text"
MSG_NOTICE = "m.notice"
MSG_IMAGE = "m.image"
MSG_VIDEO = "m.video"

# Server error codes
M_FORBIDDEN = "M_FORBIDDEN"
M_USER_IN_USE = "M_USER_IN_USE"
M_NOT_FOUND = "M_NOT_FOUND"
M_LIMIT_EXCEEDED = "M_LIMIT_EXCEEDED"
M_UNKNOWN_TOKEN = "M_UNKNOWN_TOKEN"
M_MISSING_TOKEN = "M_MISSING_TOKEN"
M_BAD_JSON = "M_BAD_JSON"
M_NOT_JSON = "M_NOT_JSON"
M_INVALID_USERNAME = "M_INVALID_USERNAME"

# Registration auth type for appservice users
AUTH_TYPE_APPSERVICE = "m.login.application_service"

# Stored typing timeout meaning "not typing"
TYPING_STOPPED = -1

# Power level defaults when the room does not specify them
PL_USERS_DEFAULT = 0
PL_EVENTS_DEFAULT = 0
PL_STATE_DEFAULT = 50
PL_BAN = 50
PL_KICK = 50
PL_REDACT = 50
PL_INVITE = 0

CLIENT_API_PREFIX = "/_matrix/client/v3"
