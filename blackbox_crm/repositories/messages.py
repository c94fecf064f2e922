from blackbox_crm.models.message import Message
from blackbox_crm.repositories.base import OwnedRepository


class MessageRepository(OwnedRepository[Message]):
    model = Message
