from enum import Enum

class Animation(str, Enum):
    pulse = "pulse"
    strobe = "strobe"
    wave = "wave"
    fade = "fade"

class PresenceEventType(str, Enum):
    join = "join"
    leave = "leave"
    sync = "sync"

class ChannelState(str, Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    subscribed = "subscribed"

class ActivityLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"

class VenueActivity(str, Enum):
    quiet = "quiet"
    active = "active"
    busy = "busy"

class LocationError(str, Enum):
    permission_denied = "permission_denied"
    position_unavailable = "position_unavailable"
    timeout = "timeout"
    not_supported = "not_supported"
    unknown = "unknown"
