from __future__ import annotations

import pydantic
import pytest

from metaoverlay.adapters.schema import (
    MergeResultPayload,
    MergeStrategyConfigPayload,
    OverlayPayload,
    PolicyListAdapter,
    UpgradeItemListAdapter,
)
from metaoverlay.domain.customization import resolve_upgrade
from metaoverlay.domain.model import (
    CustomizationOrigin,
    FieldChange,
    MergeStrategy,
    OverlayScope,
    Resolution,
)
from tests.helpers.overlays import START, make_overlay


def test_overlay_payload_accepts_camel_case() -> None:
    payload = OverlayPayload.model_validate(
        {
            "baseType": "entity",
            "baseName": "Account",
            "scope": "user",
            "owner": "alice",
            "tenantId": "acme",
            "patch": {"fields.status.label": "State"},
            "origin": "api",
            "ignored": True,
        }
    )

    overlay = payload.to_domain()

    assert overlay.key.scope is OverlayScope.USER
    assert overlay.tenant_id == "acme"
    assert overlay.origin is CustomizationOrigin.API
    assert overlay.patch == {"fields.status.label": "State"}
    assert overlay.version == 0
    assert overlay.id


def test_overlay_payload_keeps_given_id() -> None:
    payload = OverlayPayload.model_validate(
        {"id": "ov-1", "base_type": "entity", "base_name": "Account"}
    )

    assert payload.to_domain().id == "ov-1"


def test_overlay_payload_rejects_invalid_key() -> None:
    with pytest.raises(pydantic.ValidationError, match="owner"):
        OverlayPayload.model_validate(
            {"baseType": "entity", "baseName": "Account", "scope": "user"}
        )


def test_overlay_payload_serialises_camel_case() -> None:
    overlay = make_overlay({"label": "Client"})
    overlay.changes.append(
        FieldChange(
            path="label",
            original_value="Account",
            current_value="Client",
            changed_by="alice",
            changed_at=START,
        )
    )

    payload = OverlayPayload.from_domain(overlay).to_payload()

    assert payload["baseType"] == "entity"
    assert payload["scope"] == "platform"
    assert payload["changes"][0]["originalValue"] == "Account"
    assert payload["changes"][0]["changedAt"] == "2025-03-01T09:00:00Z"


def test_policy_list_from_json() -> None:
    policies = PolicyListAdapter.validate_json(
        '[{"metadataType": "entity", "lockedFields": ["fields.*.type"],'
        ' "allowDeleteFields": true}]'
    )

    [policy] = [item.to_domain() for item in policies]
    assert policy.metadata_type == "entity"
    assert policy.locked_fields == ("fields.*.type",)
    assert policy.allow_delete_fields
    assert policy.allow_add_fields


def test_strategy_payload_defaults() -> None:
    config = MergeStrategyConfigPayload.model_validate(
        {"defaultStrategy": "keep-custom", "alwaysAcceptIncoming": ["layout"]}
    ).to_domain()

    assert config.default_strategy is MergeStrategy.KEEP_CUSTOM
    assert config.always_accept_incoming == ("layout",)
    assert config.auto_resolve_non_conflicting


def test_merge_result_payload_renders_missing_as_null() -> None:
    result = resolve_upgrade({"label": "A"}, {"label": "B", "help": "x"}, {"help": "y"})

    payload = MergeResultPayload.from_domain(result).to_payload()

    [conflict] = payload["conflicts"]
    assert conflict["path"] == "help"
    assert conflict["baseValue"] is None
    assert conflict["incomingValue"] == "x"
    assert conflict["suggestedResolution"] == Resolution.MANUAL.value
    assert payload["success"] is False
    assert payload["stats"]["conflicts"] == 1
    assert payload["autoResolved"][0]["resolution"] == "accept-incoming"


def test_upgrade_items_from_python() -> None:
    [item] = UpgradeItemListAdapter.validate_python(
        [
            {
                "baseType": "entity",
                "baseName": "Account",
                "incomingMetadata": {"label": "Account"},
                "packageVersion": "2.0",
            }
        ]
    )

    upgrade = item.to_domain()
    assert upgrade.incoming_metadata == {"label": "Account"}
    assert upgrade.package_version == "2.0"
    assert upgrade.package_id is None
