"""
GymFlow Delivery Dispatcher
Hands rendered flow messages to the outbound relay over HTTP.
"""
from dataclasses import dataclass
import logging
import uuid
from typing import Optional

import requests

from gymflow.services.automation.exceptions import (
    ConfigurationError,
    PermanentDeliveryError,
    TransientDeliveryError,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 425, 429}


@dataclass
class DeliveryResult:
    delivered: bool
    provider_id: Optional[str] = None
    error: Optional[str] = None
    permanent: bool = False


class RelayDispatcher:
    """
    Posts messages to the relay API:
        POST {base_url}/messages
        {'channel': 'EMAIL'|'SMS', 'to': ..., 'subject': ..., 'body': ...}
    2xx means accepted; 408/425/429/5xx and network errors are transient,
    any other 4xx is a permanent rejection.
    """

    def __init__(self, base_url: str, api_key: str = '', timeout: float = 15):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

    def send(self, channel: str, to: str, subject: Optional[str], body: str,
             idempotency_key: Optional[str] = None) -> DeliveryResult:
        payload = {
            'channel': channel,
            'to': to,
            'subject': subject,
            'body': body,
        }
        headers = {
            'Content-Type': 'application/json',
            'Idempotency-Key': idempotency_key or str(uuid.uuid4()),
        }
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'

        try:
            response = requests.post(
                f'{self.base_url}/messages',
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientDeliveryError(f"relay unreachable: {e}") from e
        except requests.RequestException as e:
            raise PermanentDeliveryError(f"relay request invalid: {e}") from e

        if 200 <= response.status_code < 300:
            provider_id = None
            try:
                provider_id = (response.json() or {}).get('id')
            except ValueError:
                logger.warning(f"Relay returned non-JSON body for {channel} to {to}")
            return DeliveryResult(delivered=True, provider_id=provider_id)

        detail = f"relay returned {response.status_code}: {response.text[:200]}"
        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientDeliveryError(detail)
        raise PermanentDeliveryError(detail)


class DryRunDispatcher:
    """Logs messages instead of sending them (development / staging)."""

    def send(self, channel: str, to: str, subject: Optional[str], body: str,
             idempotency_key: Optional[str] = None) -> DeliveryResult:
        logger.info(f"[dry-run] {channel} to {to}: {subject or body[:60]!r}")
        return DeliveryResult(delivered=True, provider_id=f'dry-run-{uuid.uuid4().hex[:12]}')


def build_dispatcher(config):
    if config.get('DELIVERY_DRY_RUN'):
        return DryRunDispatcher()
    relay_url = config.get('DELIVERY_RELAY_URL')
    if not relay_url:
        raise ConfigurationError('DELIVERY_RELAY_URL is not set and DELIVERY_DRY_RUN is off')
    return RelayDispatcher(
        relay_url,
        api_key=config.get('DELIVERY_API_KEY', ''),
        timeout=config.get('DELIVERY_TIMEOUT', 15),
    )
