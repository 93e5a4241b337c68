"""
Netlify Function: stripe-webhook

Netlify may deliver the body base64-encoded (``isBase64Encoded``); the
signature is verified over the decoded raw bytes.
"""

from api.stripe_webhook import handler

__all__ = ["handler"]
