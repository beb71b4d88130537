"""Sign a payload with the shared secret and POST it to a running listener.

Handy for checking a deployment end to end without pushing to the real
repository. The signature is sent in the X-Hub-Signature-256 header.
"""
import requests

from .signature import SIGNATURE_HEADER, sign


def send_signed(url: str, body: bytes, secret: bytes, event: str = 'push', timeout: float = 10) -> requests.Response:
    headers = {
        'Content-Type': 'application/json',
        'X-GitHub-Event': event,
        SIGNATURE_HEADER: sign(body, secret),
    }
    return requests.post(url, data=body, headers=headers, timeout=timeout)
