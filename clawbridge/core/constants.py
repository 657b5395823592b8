"""Gateway protocol constants and default timeouts (shared by every transport)."""

DEFAULT_SESSION_KEY = "agent:main:main"

# Socket protocol handshake
PROTOCOL_VERSION = 3
CLIENT_DESCRIPTOR = {
    "id": "webchat",
    "version": "0.5.0",
    "platform": "web",
    "mode": "webchat",
}
CLIENT_ROLE = "operator"
CLIENT_SCOPES = ["operator.read", "operator.write"]
CLIENT_LOCALE = "en-US"
CLIENT_USER_AGENT = "clawbridge"

# Timeouts in seconds; every stage owns one and none of them is unbounded.
DEFAULT_TIMEOUT_MS = 15_000
SOCKET_REQUEST_TIMEOUT = 7.0
BRIDGE_SOCKET_TIMEOUT = 9.0
BRIDGE_HTTP_TIMEOUT = 12.0
PROBE_TIMEOUT = 4.0
CONNECTIVITY_TEST_TIMEOUT_MS = 8_000
BASIC_CHECK_TIMEOUT = 5.0
DIAGNOSTIC_TIMEOUT = 10.0

# CLI subprocess bounds
CLI_TIMEOUT = 20.0
CLI_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
CLI_BINARY = "openclaw"
CLI_DEFAULT_WORKSPACE = "~/.openclaw/workspace"

# Method-name synonyms; gateways differ between dot and underscore verbs.
STATUS_METHODS = ["status"]
AGENTS_LIST_METHODS = ["agents.list", "agents_list"]
CHANNELS_METHODS = ["channels.status", "channels.list", "channels_status", "channels_list"]
CONFIG_GET_METHODS = ["config.get", "config_get"]
CONFIG_SET_METHODS = ["config.set", "config_set"]
SESSIONS_LIST_METHODS = ["sessions.list", "sessions_list"]
SESSION_MESSAGES_METHODS = ["sessions.get", "sessions_get", "chat.history", "sessions_history"]
SEND_MESSAGE_METHODS = ["sessions.send", "sessions_send", "chat.send"]
CREATE_AGENT_TOOLS = [
    "agents.create",
    "agents_create",
    "agents.add",
    "agents_add",
    "agents.upsert",
    "agents_upsert",
    "agent.create",
    "agent_create",
]

AGENTS_REST_PATHS = ["/api/agents", "/agents"]

# Collection keys scanned, in priority order, when pulling a dataset out of a payload.
DATASET_KEYS = [
    "agents",
    "channels",
    "sessions",
    "files",
    "skills",
    "logs",
    "jobs",
    "entries",
    "items",
    "data",
]
DATASET_NESTING_KEYS = ["result", "payload", "data"]
