import pytest

from typedrpc.__main__ import build_parser, overrides_from_args
from typedrpc.version import __version__


def test_overrides_only_carry_given_options():
    args = build_parser().parse_args(["--protocol-path", "/srv/p", "--port", "4000"])
    assert overrides_from_args(args) == {"protocol_path": "/srv/p", "default_port": 4000}


def test_api_path_turns_on_auto_implement():
    args = build_parser().parse_args(
        ["--protocol-path", "/srv/p", "--api-path", "/srv/a", "--hide-api-path", "--binary"]
    )
    out = overrides_from_args(args)
    assert out["auto_implement"] is True
    assert out["api_path"] == "/srv/a"
    assert out["hide_api_path"] is True
    assert out["binary_transport"] is True


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as ei:
        build_parser().parse_args(["--version"])
    assert ei.value.code == 0
    assert __version__ in capsys.readouterr().out
