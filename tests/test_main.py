from __future__ import annotations

import argparse
import json
from pathlib import Path

import pytest

import main


def test_parse_address() -> None:
    target = main.parse_address("  9920 Gulf Palm ")

    assert target.address_number == "9920"
    assert target.street_name == "Gulf Palm"


@pytest.mark.parametrize("value", ["", "9920", "   "])
def test_parse_address_rejects_incomplete_input(value: str) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        main.parse_address(value)


def test_load_targets_accepts_camel_case_keys(tmp_path: Path) -> None:
    path = tmp_path / "targets.json"
    path.write_text(
        json.dumps([{"addressNumber": "9920", "streetName": "Gulf Palm"}, {"addressNumber": "100", "streetName": "Main"}]),
        encoding="utf-8",
    )

    targets = main.load_targets(path)

    assert [(t.address_number, t.street_name) for t in targets] == [("9920", "Gulf Palm"), ("100", "Main")]


def test_parser_collects_repeated_addresses() -> None:
    args = main.build_parser().parse_args(["--address", "9920 Gulf Palm", "--address", "100 Main", "--workers", "2"])

    assert [t.label for t in args.address] == ["9920 Gulf Palm", "100 Main"]
    assert args.workers == 2
    assert args.headed is False


def test_main_without_targets_returns_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOOGLE_API_KEY", "key-123")
    monkeypatch.setattr(main, "setup_logging", lambda level: None)
    monkeypatch.setattr(main, "load_dotenv", lambda: False)

    assert main.main(["--dsn", f"sqlite:///{tmp_path / 'records.db'}", "--init-db"]) == 1
