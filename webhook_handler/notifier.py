import logging
import os
import secrets
import threading
import time
from typing import Callable, Dict

import requests

_last_call: Dict[str, float] = {}
_last_call_lock = threading.Lock()

logger = logging.getLogger("webhook.notify")


def retry(max_attempts: int = 3, base_delay: float = 0.5, backoff: float = 2.0, jitter: float = 0.1):
    def deco(func: Callable):
        def wrapped(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except requests.RequestException:
                    attempt += 1
                    if attempt >= max_attempts:
                        raise
                    sleep = base_delay * (backoff ** (attempt - 1))
                    jitter_val = (secrets.randbelow(1000) / 1000.0) * jitter
                    if secrets.randbelow(2) == 0:
                        sleep = sleep * (1 - jitter_val)
                    else:
                        sleep = sleep * (1 + jitter_val)
                    time.sleep(sleep)
        return wrapped
    return deco


def rate_limit(min_interval: float = 1.0):
    """Simple per-function rate limiter (min seconds between calls)."""
    def deco(func: Callable):
        key = func.__name__
        def wrapped(*args, **kwargs):
            now = time.time()
            with _last_call_lock:
                last = _last_call.get(key, 0)
                if now - last < min_interval:
                    logger.debug('Rate limit: skipping %s', key)
                    return None
                _last_call[key] = now
            return func(*args, **kwargs)
        return wrapped
    return deco


@retry(max_attempts=3)
def notify_telegram(bot_token: str, chat_id: str, message: str) -> None:
    """Send a Telegram message via bot API. Network errors raise after retries."""
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    resp = requests.post(url, json={"chat_id": chat_id, "text": message}, timeout=10)
    resp.raise_for_status()
    logger.info("Sent telegram message to %s", chat_id)


def _notify_from_env(message: str) -> None:
    bot = os.getenv('TELEGRAM_BOT_TOKEN')
    chat = os.getenv('TELEGRAM_CHAT_ID')
    if not bot or not chat:
        logger.debug('Telegram creds not configured in env')
        return
    try:
        notify_telegram(bot, chat, message)
    except requests.RequestException:
        logger.exception('Failed to send telegram notification')


def _security_alert(message: str) -> None:
    _notify_from_env(message)


def _deploy_alert(message: str) -> None:
    _notify_from_env(message)


# separate buckets: forged-request noise must not mute deploy failures
security_alert = rate_limit(30.0)(_security_alert)
deploy_alert = rate_limit(1.0)(_deploy_alert)
