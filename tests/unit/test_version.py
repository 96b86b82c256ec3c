"""Unit tests for codexsync.__version__."""

from __future__ import annotations

import importlib.metadata
import importlib.util
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import pytest

import codexsync
from codexsync.cli import main


def test_version_from_installed_metadata() -> None:
    try:
        expected = version("codexsync")
    except PackageNotFoundError:
        expected = "0.0.0+unknown"

    assert codexsync.__version__ == expected


def test_source_checkout_falls_back_with_warning(monkeypatch: pytest.MonkeyPatch) -> None:

    def _raise_package_not_found(_name: str) -> str:
        raise PackageNotFoundError

    monkeypatch.setattr(importlib.metadata, "version", _raise_package_not_found)

    init_path = Path(__file__).resolve().parents[2] / "src" / "codexsync" / "__init__.py"
    spec = importlib.util.spec_from_file_location("codexsync_source_checkout", init_path)
    assert spec is not None
    assert spec.loader is not None

    module = importlib.util.module_from_spec(spec)
    with pytest.warns(
        RuntimeWarning,
        match="Package metadata for 'codexsync' not found",
    ):
        spec.loader.exec_module(module)

    assert module.__version__ == "0.0.0+unknown"


def test_cli_reports_package_version(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])

    assert exc_info.value.code == 0
    assert capsys.readouterr().out == f"codexsync {codexsync.__version__}\n"
