from zapcart.models.tenant import Tenant
from zapcart.models.whatsapp_integration import WhatsAppIntegration
from zapcart.models.whatsapp_group import WhatsAppGroup
from zapcart.models.customer import Customer
from zapcart.models.product import Product
from zapcart.models.cart import Cart
from zapcart.models.order import Order
from zapcart.models.cart_item import CartItem
from zapcart.models.outbound_message import OutboundMessageRecord
from zapcart.models.inbound_message_log import InboundMessageLog
from zapcart.models.pending_confirmation import PendingConfirmation
from zapcart.models.message_template import MessageTemplate
from zapcart.models.sending_job import SendingJob
