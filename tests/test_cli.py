from __future__ import annotations

from pathlib import Path

import pytest

from telemetry_link.cli import parse_args, resolve_output
from telemetry_link.commands import Command
from telemetry_link.protocol import DEFAULT_PORT
from telemetry_link.store import Store


def test_record_defaults() -> None:
    args = parse_args(["record"])
    assert args.command == "record"
    assert args.host == "localhost"
    assert args.port == DEFAULT_PORT
    assert args.output is None


def test_serve_options() -> None:
    args = parse_args(["-p", "4000", "serve", "--count", "5", "--interval", "0.1"])
    assert args.port == 4000
    assert args.count == 5
    assert args.interval == pytest.approx(0.1)
    assert args.bind == "0.0.0.0"


def test_missing_command_exits() -> None:
    with pytest.raises(SystemExit):
        parse_args([])


def test_output_flags_are_exclusive() -> None:
    with pytest.raises(SystemExit):
        parse_args(["record", "-o", "a.csv", "--output-dir", "logs"])


def test_resolve_output_explicit_file(tmp_path: Path) -> None:
    args = parse_args(["record", "-o", str(tmp_path / "run.csv")])
    assert resolve_output(args, Store()) == tmp_path / "run.csv"


def test_resolve_output_auto_name(tmp_path: Path) -> None:
    store = Store()
    store.add_command(Command.align_line(50))
    args = parse_args(["record", "--output-dir", str(tmp_path / "logs")])

    path = resolve_output(args, store)

    assert path.parent == tmp_path / "logs"
    assert path.parent.is_dir()
    assert path.name.startswith("data_AlignLine(50)_")
    assert path.suffix == ".csv"
