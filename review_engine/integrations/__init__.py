from .stripe_client import StripeClient
from .sendgrid_client import SendGridClient
from .identity_client import IdentityClient

__all__ = ['StripeClient', 'SendGridClient', 'IdentityClient']
