"""
Netlify Function: stripe-create-checkout-session

Netlify events carry ``httpMethod``, lower-cased headers and an optional
base64 body, which the shared request helpers already understand.
"""

from api.create_checkout_session import handler

__all__ = ["handler"]
