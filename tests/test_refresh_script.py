from __future__ import annotations

import pytest

from scripts.refresh_cache import MIN_DELAY_SECONDS, parse_args


def test_defaults_refresh_every_source_daily():
    args = parse_args([])
    assert args.source == []
    assert args.delay == 60 * 60 * 24


def test_sources_and_delay_are_normalised():
    args = parse_args(["--source", " ECB_USD ", "--source", "yahoo_close", "--delay", "3600"])
    assert args.source == ["ecb_usd", "yahoo_close"]
    assert args.delay == 3600


@pytest.mark.parametrize("delay", ["0", "-5", "soon", str(MIN_DELAY_SECONDS - 1)])
def test_invalid_delay_exits_with_usage_error(delay, capsys):
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["--delay", delay])
    assert excinfo.value.code == 2
    assert "delay" in capsys.readouterr().err


def test_invalid_source_exits_with_usage_error(capsys):
    with pytest.raises(SystemExit):
        parse_args(["--source", "ecb usd; drop"])
    assert "source" in capsys.readouterr().err
