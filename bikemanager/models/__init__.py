from .user import User, UserEmailPreference
from .bike import Bike, ScheduledMaintenance
from .email_log import EmailLog

__all__ = [
    "User",
    "UserEmailPreference",
    "Bike",
    "ScheduledMaintenance",
    "EmailLog",
]
