"""
Plain helpers shared by test modules.
"""

import json
import time
import uuid
from datetime import timedelta

from django.utils import timezone
from rest_framework_simplejwt.tokens import RefreshToken

from marketplace.gateway import compute_signature

WEBHOOK_SECRET = 'whsec_test_secret'


def future(hours=24):
    """Get a datetime in the future."""
    return timezone.now() + timedelta(hours=hours)


def signed_event(event_type, payment_reference=None, event_id=None, timestamp=None, secret=WEBHOOK_SECRET, **data):
    """
    Build a signed webhook delivery.

    Returns:
        tuple: (payload bytes, signature, timestamp string)
    """
    if payment_reference is not None:
        data['payment_reference'] = payment_reference
    payload = json.dumps({
        'id': event_id or f'evt_{uuid.uuid4().hex}',
        'type': event_type,
        'data': data,
    }).encode('utf-8')
    timestamp = int(time.time()) if timestamp is None else timestamp
    return payload, compute_signature(secret, timestamp, payload), str(timestamp)


def token_for(user):
    """Generate JWT access token for ``user``."""
    return str(RefreshToken.for_user(user).access_token)


def authenticate(client, user):
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {token_for(user)}')
    return client
