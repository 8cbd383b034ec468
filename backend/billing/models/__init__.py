from .tenancy import Tenant, CustomerOrganization
from .catalog import ProductPlan, ProductPricing, Coupon
from .line_items import LineItem
from .quotes import Quote
from .invoices import Invoice
from .subscriptions import Subscription
from .activity import ActivityLogEntry
from .documents import DocumentSequence

__all__ = [
    'Tenant', 'CustomerOrganization',
    'ProductPlan', 'ProductPricing', 'Coupon',
    'LineItem',
    'Quote', 'Invoice', 'Subscription',
    'ActivityLogEntry', 'DocumentSequence',
]
