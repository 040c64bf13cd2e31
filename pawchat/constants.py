# PawPal chat protocol constants (message types, defaults, wire strings)

# Inbound message types
T_AUTH = "auth"
T_CHAT = "chat_message"

# Outbound message types
T_AUTH_SUCCESS = "auth_success"
T_SYSTEM = "system_message"
T_ERROR = "error"

# Envelope keys
K_TYPE = "type"
K_DATA = "data"

# Inbound field names
F_USER_ID = "userId"
F_USERNAME = "username"
F_IS_ADMIN = "isAdmin"
F_MESSAGE = "message"
F_RECIPIENT_ID = "recipientId"

# Outbound data keys
D_ID = "id"
D_MESSAGE = "message"
D_SENDER = "sender"
D_TIMESTAMP = "timestamp"

# Guest defaults applied to senders that never sent auth
GUEST_USER_ID = "guest"
GUEST_USERNAME = "Guest"
GUEST_IS_ADMIN = False

DEFAULT_WS_PATH = "/ws"

ERR_INVALID_FORMAT = "Invalid message format"

DEFAULT_GREETING = (
    "Welcome to PawPal chat! If you're logged in, send an auth message to "
    "identify yourself."
)
