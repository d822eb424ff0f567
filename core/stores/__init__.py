"""SQL repositories over PostgresClient."""

from core.stores.invoice_store import InvoiceStore
from core.stores.client_store import ClientStore
from core.stores.payment_link_store import PaymentLinkStore
from core.stores.reminder_store import ReminderStore
from core.stores.late_fee_store import LateFeeStore
