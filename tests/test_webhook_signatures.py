"""Tests for webhook signature validation strategies."""
from __future__ import annotations

import hashlib
import hmac

import pytest

from webhook_ingest.services.webhook_signatures import (
    WebhookSecretNotConfigured,
    build_manifest,
    parse_signature_header,
    verify_manifest_signature,
    verify_shared_secret,
)


def _mp_signature(secret: str, manifest: str) -> str:
    return hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()


def test_shared_secret_accepts_exact_match():
    assert verify_shared_secret("s3cret-value", "s3cret-value") is True


@pytest.mark.parametrize("received", ["s3cret-valuf", "S3cret-value", "s3cret-value ", "", None])
def test_shared_secret_rejects_tampered_values(received):
    assert verify_shared_secret(received, "s3cret-value") is False


def test_shared_secret_length_mismatch_is_invalid_not_error(monkeypatch):
    calls = []
    monkeypatch.setattr(
        "webhook_ingest.services.webhook_signatures.hmac.compare_digest",
        lambda a, b: calls.append((a, b)) or False,
    )

    assert verify_shared_secret("short", "a-much-longer-secret") is False
    assert calls == []


def test_shared_secret_missing_configuration_raises():
    with pytest.raises(WebhookSecretNotConfigured):
        verify_shared_secret("anything", None)
    with pytest.raises(WebhookSecretNotConfigured):
        verify_shared_secret("anything", "")


def test_parse_signature_header():
    parsed = parse_signature_header("ts=1700000000, v1=abcdef")
    assert parsed is not None
    assert parsed.ts == "1700000000"
    assert parsed.digest == "abcdef"


@pytest.mark.parametrize("header", [None, "", "ts=123", "v1=abc", "garbage", "ts=,v1=abc"])
def test_parse_signature_header_malformed(header):
    assert parse_signature_header(header) is None


def test_build_manifest_includes_only_present_fields():
    assert build_manifest(resource_id="123", request_id="req-1", ts="99") == "id:123;request-id:req-1;ts:99;"
    assert build_manifest(resource_id=None, request_id="req-1", ts="99") == "request-id:req-1;ts:99;"
    assert build_manifest(resource_id="123", request_id=None, ts="99") == "id:123;ts:99;"
    assert build_manifest(resource_id=None, request_id=None, ts="99") == "ts:99;"


def test_manifest_signature_valid():
    secret = "mp-secret"
    digest = _mp_signature(secret, "id:pre-1;request-id:req-9;ts:1700000000;")

    assert verify_manifest_signature(
        f"ts=1700000000,v1={digest}",
        request_id="req-9",
        resource_id="pre-1",
        secret=secret,
    ) is True


def test_manifest_signature_rejects_tampered_fields():
    secret = "mp-secret"
    digest = _mp_signature(secret, "id:pre-1;request-id:req-9;ts:1700000000;")
    header = f"ts=1700000000,v1={digest}"

    assert verify_manifest_signature(header, request_id="req-9", resource_id="pre-2", secret=secret) is False
    assert verify_manifest_signature(header, request_id="req-8", resource_id="pre-1", secret=secret) is False
    assert verify_manifest_signature(header, request_id="req-9", resource_id="pre-1", secret="other") is False
    assert verify_manifest_signature(
        f"ts=1700000001,v1={digest}", request_id="req-9", resource_id="pre-1", secret=secret
    ) is False


def test_manifest_signature_length_mismatch_and_non_hex():
    secret = "mp-secret"
    digest = _mp_signature(secret, "ts:1;")

    assert verify_manifest_signature(f"ts=1,v1={digest[:-2]}", request_id=None, resource_id=None, secret=secret) is False
    assert verify_manifest_signature("ts=1,v1=not-hex", request_id=None, resource_id=None, secret=secret) is False


def test_manifest_signature_malformed_header_is_invalid():
    assert verify_manifest_signature("v1=abc", request_id=None, resource_id=None, secret="x") is False
    assert verify_manifest_signature(None, request_id=None, resource_id=None, secret="x") is False


def test_manifest_signature_missing_secret_raises():
    with pytest.raises(WebhookSecretNotConfigured):
        verify_manifest_signature("ts=1,v1=ab", request_id=None, resource_id=None, secret=None)
