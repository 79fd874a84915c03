# felicity/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from felicity.models.user import User  # noqa: F401
from felicity.models.profiles import Organiser, Participant  # noqa: F401

from felicity.models.event import Event, MerchItem, MerchVariant  # noqa: F401
from felicity.models.registration import Registration, Ticket  # noqa: F401

from felicity.models.forum import ForumMessage, ForumReaction  # noqa: F401
