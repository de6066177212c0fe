from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from metaoverlay.domain.customization import apply_patch
from metaoverlay.domain.errors import ConflictError, NotFoundError, ValidationError
from metaoverlay.domain.model import (
    CustomizationPolicy,
    MetadataItem,
    OverlayEventKind,
    OverlayMerge,
    OverlayScope,
    PolicyRule,
)
from tests.helpers.overlays import RecordingListener, account_document, make_overlay

if TYPE_CHECKING:
    from metaoverlay.domain.customization import MetadataOverlayService
    from metaoverlay.domain.model import Overlay


@pytest.fixture
def registered(service: MetadataOverlayService) -> MetadataOverlayService:
    service.register(
        "entity", "Account", account_document(), package_id="crm", package_version="1.0"
    )
    return service


def test_register_replaces_system_document(service: MetadataOverlayService) -> None:
    service.register("entity", "Account", account_document(), package_version="1.0")
    service.register("entity", "Account", {"label": "Account"}, package_version="1.1")

    item = service.get_system("entity", "Account")

    assert item is not None
    assert item.document == {"label": "Account"}
    assert item.package_version == "1.1"


def test_save_overlay_assigns_versions(registered: MetadataOverlayService) -> None:
    first = registered.save_overlay(make_overlay({"label": "Client"}))
    second = registered.save_overlay(
        make_overlay({"label": "Customer"}), expected_version=first.version
    )

    assert first.version == 1
    assert second.version == 2
    assert second.id == first.id
    stored = registered.get_overlay("entity", "Account")
    assert stored is not None
    assert stored.patch == {"label": "Customer"}


def test_stale_expected_version_is_rejected(registered: MetadataOverlayService) -> None:
    registered.save_overlay(make_overlay({"label": "Client"}))
    registered.save_overlay(make_overlay({"label": "Customer"}), expected_version=1)

    with pytest.raises(ConflictError) as excinfo:
        registered.save_overlay(make_overlay({"label": "Partner"}), expected_version=1)

    assert excinfo.value.expected_version == 1
    assert excinfo.value.actual_version == 2
    stored = registered.get_overlay("entity", "Account")
    assert stored is not None
    assert stored.patch == {"label": "Customer"}


def test_expected_version_zero_means_create_only(registered: MetadataOverlayService) -> None:
    registered.save_overlay(make_overlay({"label": "Client"}), expected_version=0)

    with pytest.raises(ConflictError):
        registered.save_overlay(make_overlay({"label": "Customer"}), expected_version=0)


def test_locked_field_is_rejected_and_nothing_persisted(
    registered: MetadataOverlayService,
) -> None:
    registered.register_policy(
        CustomizationPolicy(metadata_type="entity", locked_fields=("fields.*.type",))
    )
    listener = RecordingListener()
    registered.events.subscribe(listener)

    with pytest.raises(ValidationError) as excinfo:
        registered.save_overlay(
            make_overlay({"fields": {"status": {"type": "text", "label": "State"}}})
        )

    assert excinfo.value.path == "fields.status.type"
    assert excinfo.value.rule is PolicyRule.LOCKED_FIELD
    assert registered.get_overlay("entity", "Account") is None
    assert listener.events == []


def test_locked_field_under_a_new_parent_is_rejected(
    registered: MetadataOverlayService,
) -> None:
    registered.register_policy(
        CustomizationPolicy(metadata_type="entity", locked_fields=("fields.*.type",))
    )

    with pytest.raises(ValidationError) as excinfo:
        registered.save_overlay(make_overlay({"fields.priority.type": "text"}))

    assert excinfo.value.path == "fields.priority.type"
    assert excinfo.value.rule is PolicyRule.LOCKED_FIELD
    assert registered.get_overlay("entity", "Account") is None


def test_policy_requires_system_document(service: MetadataOverlayService) -> None:
    service.register_policy(CustomizationPolicy(metadata_type="entity"))

    with pytest.raises(NotFoundError):
        service.save_overlay(make_overlay({"label": "Client"}))


def test_overlay_without_policy_needs_no_system_document(
    service: MetadataOverlayService,
) -> None:
    stored = service.save_overlay(make_overlay({"label": "Client"}, base_name="Draft"))

    assert stored.version == 1
    assert [change.original_value for change in stored.changes] == [None]


def test_dot_keys_are_stored_nested(registered: MetadataOverlayService) -> None:
    stored = registered.save_overlay(make_overlay({"fields.status.label": "State"}))

    assert stored.patch == {"fields": {"status": {"label": "State"}}}
    assert stored.change_paths == ("fields.status.label",)


def test_audit_trail_keeps_original_value(registered: MetadataOverlayService) -> None:
    first = registered.save_overlay(make_overlay({"label": "Client"}), actor="alice")
    second = registered.save_overlay(
        make_overlay({"label": "Customer", "layout.columns": 3}), actor="bob"
    )

    [created] = first.changes
    assert created.path == "label"
    assert created.original_value == "Account"
    assert created.current_value == "Client"
    assert created.changed_by == "alice"
    assert created.changed_at == first.updated_at

    by_path = {change.path: change for change in second.changes}
    assert set(by_path) == {"label", "layout.columns"}
    assert by_path["label"].original_value == "Account"
    assert by_path["label"].current_value == "Customer"
    assert by_path["label"].changed_by == "bob"
    assert by_path["layout.columns"].original_value == 2
    assert second.created_by == "alice"
    assert second.created_at == first.created_at
    assert second.updated_by == "bob"


def test_unchanged_audit_entries_are_preserved(registered: MetadataOverlayService) -> None:
    first = registered.save_overlay(make_overlay({"label": "Client"}), actor="alice")
    second = registered.save_overlay(
        make_overlay({"label": "Client", "pluralLabel": "Clients"}), actor="bob"
    )

    by_path = {change.path: change for change in second.changes}
    assert by_path["label"].changed_by == "alice"
    assert by_path["label"].changed_at == first.changes[0].changed_at
    assert by_path["pluralLabel"].changed_by == "bob"


def test_effective_document_layers_user_over_platform(
    registered: MetadataOverlayService,
) -> None:
    registered.save_overlay(make_overlay({"label": "Client", "layout.columns": 3}))
    registered.save_overlay(
        make_overlay({"layout.columns": 1}, scope=OverlayScope.USER, owner="alice")
    )

    for_alice = registered.get_effective("entity", "Account", owner="alice")
    for_bob = registered.get_effective("entity", "Account", owner="bob")

    assert for_alice["label"] == "Client"
    assert for_alice["layout"] == {"columns": 1}
    assert for_bob == apply_patch(account_document(), {"label": "Client", "layout.columns": 3})
    system = registered.get_system("entity", "Account")
    assert system is not None
    assert system.document == account_document()


def test_effective_document_requires_system(service: MetadataOverlayService) -> None:
    with pytest.raises(NotFoundError):
        service.get_effective("entity", "Missing")


def test_tenants_are_isolated(registered: MetadataOverlayService) -> None:
    registered.save_overlay(make_overlay({"label": "Acme Client"}, tenant_id="acme"))

    assert registered.get_effective("entity", "Account", tenant_id="acme")["label"] == (
        "Acme Client"
    )
    assert registered.get_effective("entity", "Account")["label"] == "Account"
    assert registered.get_overlay("entity", "Account") is None


def test_user_overlay_is_validated_against_platform_customized_document(
    registered: MetadataOverlayService,
) -> None:
    registered.save_overlay(make_overlay({"fields.status.help": "Lifecycle stage"}))
    registered.register_policy(
        CustomizationPolicy(metadata_type="entity", allow_add_fields=False)
    )

    stored = registered.save_overlay(
        make_overlay(
            {"fields.status.help": "Where the deal is"},
            scope=OverlayScope.USER,
            owner="alice",
        )
    )
    assert stored.changes[0].original_value == "Lifecycle stage"

    with pytest.raises(ValidationError) as excinfo:
        registered.save_overlay(
            make_overlay({"fields.status.hint": "x"}, scope=OverlayScope.USER, owner="alice")
        )
    assert excinfo.value.rule is PolicyRule.ADD_NOT_ALLOWED


def test_remove_soft_deletes(registered: MetadataOverlayService) -> None:
    registered.save_overlay(make_overlay({"label": "Client"}))

    removed = registered.remove_overlay("entity", "Account")

    assert not removed.active
    assert registered.get_overlay("entity", "Account") is None
    assert registered.list_overlays("entity") == []
    assert registered.get_effective("entity", "Account")["label"] == "Account"
    with pytest.raises(NotFoundError):
        registered.remove_overlay("entity", "Account")

    recreated = registered.save_overlay(make_overlay({"label": "Partner"}), expected_version=0)
    assert recreated.version == 1
    assert recreated.id != removed.id


def test_list_overlays_filters_by_scope(registered: MetadataOverlayService) -> None:
    registered.save_overlay(make_overlay({"label": "Client"}))
    registered.save_overlay(make_overlay({"label": "Mine"}, scope=OverlayScope.USER, owner="bob"))

    assert len(registered.list_overlays("entity")) == 2
    [user] = registered.list_overlays("entity", "user")
    assert user.owner == "bob"
    assert registered.list_overlays("layout") == []


def test_writes_emit_events(registered: MetadataOverlayService) -> None:
    listener = RecordingListener()
    registered.events.subscribe(listener)

    registered.save_overlay(make_overlay({"label": "Client"}), actor="alice")
    registered.remove_overlay("entity", "Account", actor="alice")

    assert [event.kind for event in listener.events] == [
        OverlayEventKind.APPLIED,
        OverlayEventKind.REMOVED,
    ]
    assert all(event.actor == "alice" for event in listener.events)


def test_failing_listener_does_not_fail_save(registered: MetadataOverlayService) -> None:
    def broken(_event: object) -> None:
        raise RuntimeError("boom")

    registered.events.subscribe(broken)

    stored = registered.save_overlay(make_overlay({"label": "Client"}))

    assert stored.version == 1


def _incoming(patch: dict[str, object]) -> MetadataItem:
    return MetadataItem(
        base_type="entity",
        base_name="Account",
        document=apply_patch(account_document(), patch),  # type: ignore[arg-type]
        package_id="crm",
        package_version="2.0",
    )


def _merge(
    service: MetadataOverlayService, overlay: Overlay, item: MetadataItem
) -> OverlayMerge:
    result = service.resolve_upgrade(
        "entity", "Account", account_document(), item.document, overlay
    )
    return OverlayMerge(overlay=overlay, result=result)


def test_commit_upgrade_rebases_overlay(registered: MetadataOverlayService) -> None:
    overlay = registered.save_overlay(make_overlay({"label": "Client"}))
    item = _incoming({"layout.columns": 3})
    merge = _merge(registered, overlay, item)

    [stored] = registered.commit_upgrade(item, [merge], actor="upgrader")

    assert stored.version == 2
    assert stored.package_version == "2.0"
    assert stored.patch == {"label": "Client"}
    system = registered.get_system("entity", "Account")
    assert system is not None
    assert system.package_version == "2.0"
    assert system.updated_at is not None
    assert item.updated_at is None
    assert registered.get_effective("entity", "Account") == merge.result.merged_metadata


def test_commit_upgrade_without_overlays_replaces_system_document(
    registered: MetadataOverlayService,
) -> None:
    item = _incoming({"layout.columns": 3})

    assert registered.commit_upgrade(item) == []
    assert registered.get_effective("entity", "Account") == item.document


def test_commit_upgrade_removes_absorbed_overlay(registered: MetadataOverlayService) -> None:
    listener = RecordingListener()
    registered.events.subscribe(listener)
    overlay = registered.save_overlay(make_overlay({"label": "Client"}))
    item = _incoming({"label": "Client"})

    assert registered.commit_upgrade(item, [_merge(registered, overlay, item)]) == []
    assert registered.get_overlay("entity", "Account") is None
    assert listener.events[-1].kind is OverlayEventKind.REMOVED


def test_commit_upgrade_detects_concurrent_edit(registered: MetadataOverlayService) -> None:
    overlay = registered.save_overlay(make_overlay({"label": "Client"}))
    item = _incoming({"layout.columns": 3})
    merge = _merge(registered, overlay, item)
    registered.save_overlay(make_overlay({"label": "Customer"}))

    with pytest.raises(ConflictError):
        registered.commit_upgrade(item, [merge])

    system = registered.get_system("entity", "Account")
    assert system is not None
    assert system.package_version == "1.0"


def test_commit_upgrade_rejects_conflicted_result(registered: MetadataOverlayService) -> None:
    overlay = registered.save_overlay(make_overlay({"label": "Client"}))
    item = _incoming({"label": "Customer"})

    with pytest.raises(ValueError, match="unresolved conflicts"):
        registered.commit_upgrade(item, [_merge(registered, overlay, item)])


def test_resolve_overlay_upgrades_covers_every_tenant_and_user(
    registered: MetadataOverlayService,
) -> None:
    registered.save_overlay(make_overlay({"label": "Client"}, tenant_id="acme"))
    registered.save_overlay(make_overlay({"layout.columns": 4}, tenant_id="globex"))
    registered.save_overlay(
        make_overlay(
            {"pluralLabel": "My Clients"},
            scope=OverlayScope.USER,
            owner="ada",
            tenant_id="acme",
        )
    )
    incoming = apply_patch(account_document(), {"layout.columns": 3, "label": "Customer"})

    merges = registered.resolve_overlay_upgrades("entity", "Account", incoming)

    assert [
        (merge.overlay.scope, merge.overlay.tenant_id, merge.success) for merge in merges
    ] == [
        (OverlayScope.PLATFORM, "acme", False),
        (OverlayScope.PLATFORM, "globex", False),
        (OverlayScope.USER, "acme", True),
    ]
    user_result = merges[2].result
    assert user_result.updated_overlay == {"pluralLabel": "My Clients"}


def test_resolve_overlay_upgrades_requires_system_document(
    service: MetadataOverlayService,
) -> None:
    with pytest.raises(NotFoundError):
        service.resolve_overlay_upgrades("entity", "Account", account_document())
