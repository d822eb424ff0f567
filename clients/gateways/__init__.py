"""Payment gateway adapters."""

from clients.gateways.base import PaymentGateway
from clients.gateways.stripe_gateway import StripeGateway
from clients.gateways.paypal_gateway import PayPalGateway
from clients.gateways.razorpay_gateway import RazorpayGateway
