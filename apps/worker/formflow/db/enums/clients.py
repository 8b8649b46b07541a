"""Client-related enums."""

from enum import Enum


class ClientType(str, Enum):
    """Which intake form (and client namespace) a client belongs to."""

    BUYER = "buyer"
    SELLER = "seller"


class ClientStatus(str, Enum):
    """Lifecycle of a client record."""

    SURVEY_SENT = "survey_sent"
    FORM_COMPLETED = "form_completed"
