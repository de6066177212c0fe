from __future__ import annotations

import json
from threading import Event
from typing import TYPE_CHECKING

import pytest

from metaoverlay.ui import cli
from tests.helpers.overlays import account_document

if TYPE_CHECKING:
    from pathlib import Path

    from metaoverlay.domain.customization import MetadataOverlayService


def _write_json(path: Path, payload: object) -> str:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


@pytest.fixture
def registered(service: MetadataOverlayService, tmp_path: Path) -> MetadataOverlayService:
    document = _write_json(tmp_path / "account.json", account_document())
    cli.main(
        ["register", "entity", "Account", document, "--package-version", "1.0"],
        service=service,
    )
    return service


def _output(capsys: pytest.CaptureFixture[str]) -> object:
    return json.loads(capsys.readouterr().out)


def test_register_and_effective(
    registered: MetadataOverlayService, capsys: pytest.CaptureFixture[str]
) -> None:
    capsys.readouterr()

    cli.main(["effective", "entity", "Account"], service=registered)

    assert _output(capsys) == account_document()
    system = registered.get_system("entity", "Account")
    assert system is not None
    assert system.package_version == "1.0"


def test_overlay_save_show_remove(
    registered: MetadataOverlayService,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    overlay_file = _write_json(
        tmp_path / "overlay.json",
        {"baseType": "entity", "baseName": "Account", "patch": {"label": "Client"}},
    )
    capsys.readouterr()

    cli.main(["--actor", "alice", "overlay", "save", overlay_file], service=registered)
    saved = _output(capsys)
    assert isinstance(saved, dict)
    assert saved["version"] == 1
    assert saved["updatedBy"] == "alice"

    cli.main(["overlay", "show", "entity", "Account"], service=registered)
    shown = _output(capsys)
    assert isinstance(shown, dict)
    assert shown["patch"] == {"label": "Client"}

    cli.main(["overlay", "remove", "entity", "Account"], service=registered)
    assert registered.get_overlay("entity", "Account") is None


def test_stale_expected_version_exits_with_failure(
    registered: MetadataOverlayService, tmp_path: Path
) -> None:
    overlay_file = _write_json(
        tmp_path / "overlay.json",
        {"baseType": "entity", "baseName": "Account", "patch": {"label": "Client"}},
    )
    cli.main(["overlay", "save", overlay_file], service=registered)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(
            ["overlay", "save", overlay_file, "--expected-version", "0"], service=registered
        )

    assert excinfo.value.code == cli.EXIT_FAILURE


def test_missing_overlay_exits_with_failure(registered: MetadataOverlayService) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["overlay", "show", "entity", "Account"], service=registered)

    assert excinfo.value.code == cli.EXIT_FAILURE


def test_invalid_input_exits_with_usage_error(
    service: MetadataOverlayService, tmp_path: Path
) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    user_without_owner = _write_json(
        tmp_path / "overlay.json",
        {"baseType": "entity", "baseName": "Account", "scope": "user"},
    )

    for argv in (
        ["register", "entity", "Account", str(broken)],
        ["register", "entity", "Account", str(tmp_path / "absent.json")],
        ["overlay", "save", user_without_owner],
        ["overlay", "show", "entity", "Account", "--scope", "user"],
    ):
        with pytest.raises(SystemExit) as excinfo:
            cli.main(argv, service=service)
        assert excinfo.value.code == cli.EXIT_USAGE, argv


def test_unknown_command_is_rejected(service: MetadataOverlayService) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["frobnicate"], service=service)

    assert excinfo.value.code == 2


def _upgrade_file(tmp_path: Path, label: str) -> str:
    incoming = account_document()
    incoming["label"] = label
    return _write_json(
        tmp_path / "items.json",
        [
            {
                "baseType": "entity",
                "baseName": "Account",
                "incomingMetadata": incoming,
                "packageVersion": "2.0",
            }
        ],
    )


def test_upgrade_dry_run_reports_conflicts(
    registered: MetadataOverlayService,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    overlay_file = _write_json(
        tmp_path / "overlay.json",
        {"baseType": "entity", "baseName": "Account", "patch": {"label": "Client"}},
    )
    cli.main(["overlay", "save", overlay_file], service=registered)
    capsys.readouterr()

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["upgrade", _upgrade_file(tmp_path, "Customer")], service=registered)

    assert excinfo.value.code == cli.EXIT_CONFLICTS
    report = _output(capsys)
    assert isinstance(report, dict)
    assert report["conflicted"] == 1
    [item] = report["items"]
    assert item["status"] == "conflicted"
    assert item["result"]["conflicts"][0]["customValue"] == "Client"
    assert item["overlays"] == [
        {"scope": "platform", "tenantId": None, "owner": None, "success": False, "conflicts": 1}
    ]


def test_upgrade_commit(
    registered: MetadataOverlayService,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    capsys.readouterr()

    cli.main(["upgrade", _upgrade_file(tmp_path, "Customer"), "--commit"], service=registered)

    report = _output(capsys)
    assert isinstance(report, dict)
    assert report["applied"] == 1
    system = registered.get_system("entity", "Account")
    assert system is not None
    assert system.document["label"] == "Customer"
    assert system.package_version == "2.0"


def test_sigint_cancels_running_upgrade(monkeypatch: pytest.MonkeyPatch) -> None:
    running = Event()
    cancel = Event()
    monkeypatch.setattr(cli, "_UPGRADE_RUNNING", running)
    monkeypatch.setattr(cli, "_CANCEL_UPGRADE", cancel)
    running.set()

    cli.sigint_handler(2, None)
    assert cancel.is_set()

    with pytest.raises(SystemExit) as excinfo:
        cli.sigint_handler(2, None)
    assert excinfo.value.code == 0
