from enum import Enum


class ConnectionState(str, Enum):
    IDLE = "idle"
    FETCHING_CREDENTIALS = "fetching_credentials"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPING = "stopping"
    ERROR = "error"


ACTIVE_STATES = {
    ConnectionState.FETCHING_CREDENTIALS,
    ConnectionState.CONNECTING,
    ConnectionState.CONNECTED,
    ConnectionState.STOPPING,
}
