"""Tests for WooCommerce webhook authentication."""

from dataclasses import replace

import pytest

from app.services.woocommerce.webhook_verifier import WebhookVerifier, compute_signature, payload_hash

BODY = b'{"id": 77, "name": "Mug"}'


def _headers(body: bytes = BODY, secret: str = "whsec_test", **extra) -> dict:
    headers = {
        "X-WC-Webhook-Topic": "product.updated",
        "X-WC-Webhook-Resource": "product",
        "X-WC-Webhook-Event": "updated",
        "X-WC-Webhook-Signature": compute_signature(body, secret),
        "X-WC-Webhook-ID": "12",
        "X-WC-Webhook-Delivery-ID": "d-1",
    }
    headers.update(extra)
    return headers


@pytest.fixture()
def verifier(woo_settings):
    return WebhookVerifier(woo_settings)


def test_valid_delivery(verifier):
    result = verifier.verify(BODY, _headers(), "10.0.0.5")
    assert result.ok
    assert result.http_status == 200
    assert result.payload_hash == payload_hash(BODY)


def test_signature_is_deterministic():
    assert compute_signature(BODY, "s") == compute_signature(BODY, "s")
    assert compute_signature(BODY, "s") != compute_signature(BODY, "t")


def test_single_byte_change_fails(verifier):
    headers = _headers()
    tampered = BODY.replace(b"77", b"78")
    result = verifier.verify(tampered, headers)
    assert not result.ok
    assert result.http_status == 401
    assert result.message == "Invalid signature"


def test_missing_signature(verifier):
    headers = _headers()
    headers.pop("X-WC-Webhook-Signature")
    result = verifier.verify(BODY, headers)
    assert (result.http_status, result.message) == (401, "Missing signature")


def test_signature_optional_when_not_required(woo_settings):
    verifier = WebhookVerifier(replace(woo_settings, woo_webhook_require_signature=False))
    headers = _headers()
    headers.pop("X-WC-Webhook-Signature")
    assert verifier.verify(BODY, headers).ok


def test_missing_secret_is_server_error(woo_settings):
    verifier = WebhookVerifier(replace(woo_settings, woo_webhook_secret=None))
    assert verifier.verify(BODY, _headers()).http_status == 500


def test_disabled(woo_settings):
    verifier = WebhookVerifier(replace(woo_settings, woo_webhook_enabled=False))
    assert verifier.verify(BODY, _headers()).http_status == 503


def test_body_too_large(woo_settings):
    verifier = WebhookVerifier(replace(woo_settings, woo_webhook_max_body_bytes=10))
    assert verifier.verify(BODY, _headers()).http_status == 413


def test_ip_allowlist(woo_settings):
    verifier = WebhookVerifier(replace(woo_settings, woo_webhook_ip_allowlist=("10.0.0.0/24", "192.168.1.9")))
    assert verifier.verify(BODY, _headers(), "10.0.0.77").ok
    assert verifier.verify(BODY, _headers(), "192.168.1.9").ok
    assert verifier.verify(BODY, _headers(), "172.16.0.1").http_status == 403
    assert verifier.verify(BODY, _headers(), None).http_status == 403


def test_topic_required(woo_settings):
    verifier = WebhookVerifier(replace(woo_settings, woo_webhook_require_topic=True))
    headers = _headers()
    headers.pop("X-WC-Webhook-Topic")
    result = verifier.verify(BODY, headers)
    assert (result.http_status, result.message) == (400, "Missing topic header")


def test_extract_meta_is_case_insensitive(verifier):
    meta = verifier.extract_meta({"x-wc-webhook-topic": " order.created ", "User-Agent": "WooCommerce/8"})
    assert meta.topic == "order.created"
    assert meta.entity_type == "order"
    assert meta.user_agent == "WooCommerce/8"
