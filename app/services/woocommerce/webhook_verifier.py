"""Authentication of inbound WooCommerce webhook deliveries.

WooCommerce signs the raw request body:
    X-WC-Webhook-Signature = base64(hmac_sha256(secret, body))
The signature must be checked against the exact bytes received.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import ipaddress
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from app.config import Settings, settings as default_settings
from app.services.woocommerce.mapper import entity_type_for

logger = logging.getLogger(__name__)

HEADER_SOURCE = "x-wc-webhook-source"
HEADER_TOPIC = "x-wc-webhook-topic"
HEADER_RESOURCE = "x-wc-webhook-resource"
HEADER_EVENT = "x-wc-webhook-event"
HEADER_SIGNATURE = "x-wc-webhook-signature"
HEADER_WEBHOOK_ID = "x-wc-webhook-id"
HEADER_DELIVERY_ID = "x-wc-webhook-delivery-id"


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    http_status: int
    message: str
    payload_hash: str


@dataclass(frozen=True)
class WebhookMeta:
    source: str | None
    topic: str | None
    resource: str | None
    event: str | None
    signature: str | None
    webhook_id: str | None
    delivery_id: str | None
    entity_type: str | None
    ip: str | None
    user_agent: str | None


def compute_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def payload_hash(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {str(key).lower(): str(value) for key, value in headers.items()}


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class WebhookVerifier:
    def __init__(self, config: Settings | None = None):
        self.settings = config or default_settings

    def extract_meta(self, headers: Mapping[str, str], client_ip: str | None = None) -> WebhookMeta:
        lowered = _lower_headers(headers)
        topic = _clean(lowered.get(HEADER_TOPIC))
        resource = _clean(lowered.get(HEADER_RESOURCE))
        return WebhookMeta(
            source=_clean(lowered.get(HEADER_SOURCE)),
            topic=topic,
            resource=resource,
            event=_clean(lowered.get(HEADER_EVENT)),
            signature=_clean(lowered.get(HEADER_SIGNATURE)),
            webhook_id=_clean(lowered.get(HEADER_WEBHOOK_ID)),
            delivery_id=_clean(lowered.get(HEADER_DELIVERY_ID)),
            entity_type=entity_type_for(topic, resource),
            ip=client_ip,
            user_agent=_clean(lowered.get("user-agent")),
        )

    def _ip_allowed(self, client_ip: str | None) -> bool:
        allowlist = self.settings.woo_webhook_ip_allowlist
        if not allowlist:
            return True
        if not client_ip:
            return False
        try:
            address = ipaddress.ip_address(client_ip)
        except ValueError:
            return False
        for entry in allowlist:
            try:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            except ValueError:
                logger.warning("woo_webhook_allowlist_entry_invalid entry=%s", entry)
        return False

    def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        client_ip: str | None = None,
    ) -> VerificationResult:
        body_hash = payload_hash(raw_body)

        def fail(status: int, message: str) -> VerificationResult:
            return VerificationResult(ok=False, http_status=status, message=message, payload_hash=body_hash)

        if not self.settings.woo_webhook_enabled:
            return fail(503, "WooCommerce webhooks disabled")

        if len(raw_body) > self.settings.woo_webhook_max_body_bytes:
            logger.warning(
                "woo_webhook_payload_too_large size=%s max=%s",
                len(raw_body),
                self.settings.woo_webhook_max_body_bytes,
            )
            return fail(413, "Payload too large")

        if not self._ip_allowed(client_ip):
            logger.warning("woo_webhook_blocked_ip ip=%s", client_ip)
            return fail(403, "Forbidden")

        meta = self.extract_meta(headers, client_ip)
        if self.settings.woo_webhook_require_signature:
            secret = self.settings.woo_webhook_secret or ""
            if not secret:
                logger.error("woo_webhook_secret_missing")
                return fail(500, "Webhook secret is not configured")
            if not meta.signature:
                logger.warning("woo_webhook_signature_missing ip=%s", client_ip)
                return fail(401, "Missing signature")
            expected = compute_signature(raw_body, secret)
            if not hmac.compare_digest(expected.encode("ascii"), meta.signature.encode("utf-8", "replace")):
                logger.warning("woo_webhook_signature_invalid ip=%s topic=%s", client_ip, meta.topic)
                return fail(401, "Invalid signature")

        if self.settings.woo_webhook_require_topic and not meta.topic:
            return fail(400, "Missing topic header")

        return VerificationResult(ok=True, http_status=200, message="OK", payload_hash=body_hash)

    def signature_valid(self, raw_body: bytes, signature: str | None) -> bool:
        secret = self.settings.woo_webhook_secret
        if not secret or not signature:
            return False
        return hmac.compare_digest(
            compute_signature(raw_body, secret).encode("ascii"), signature.encode("utf-8", "replace")
        )
