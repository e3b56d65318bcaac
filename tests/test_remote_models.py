"""Tests des schémas de réponse du control-plane."""

from __future__ import annotations

from hostlink.domain.remote import (
    ActivationResponse,
    ErrorResponse,
    StatusResponse,
    parse_model,
)


def test_parse_tolerates_missing_and_unknown_fields() -> None:
    """Champs absents: valeurs par défaut; champs inconnus: ignorés."""
    parsed = parse_model(StatusResponse, {"status": "active", "extra": 1})
    assert isinstance(parsed, StatusResponse)
    assert parsed.features == {}
    assert parsed.contract_end is None

    reply = parse_model(
        ActivationResponse,
        {"instance_id": "i", "hmac_secret": "s", "superadmins": [{"email": "a@b.c"}]},
    )
    assert reply.superadmins[0].firstname == ""


def test_parse_rejects_unusable_bodies() -> None:
    """Corps non objet ou mal typé: None."""
    assert parse_model(StatusResponse, ["active"]) is None
    assert parse_model(StatusResponse, None) is None
    assert parse_model(ActivationResponse, {"superadmins": "nope"}) is None


def test_error_detail_text_precedence() -> None:
    """`detail` prime sur `message`, puis `error`."""
    assert ErrorResponse(detail="Invalid signature", message="m").detail_text() == "Invalid signature"
    assert ErrorResponse(message="m", error="e").detail_text() == "m"
    assert ErrorResponse(error="e").detail_text() == "e"
    assert ErrorResponse().detail_text() == ""
    assert ErrorResponse(detail={"code": 1}).detail_text() == "{'code': 1}"


def test_mentions_signature() -> None:
    """Seule une erreur mentionnant la signature est une erreur de signature."""
    assert ErrorResponse(detail="Invalid Signature").mentions_signature()
    assert not ErrorResponse(detail="Instance disabled").mentions_signature()
