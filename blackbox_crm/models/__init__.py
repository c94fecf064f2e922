from blackbox_crm.models.user import User
from blackbox_crm.models.contact import Contact
from blackbox_crm.models.sales_pipeline import SalesPipeline
from blackbox_crm.models.invoice import Invoice
from blackbox_crm.models.message import Message
