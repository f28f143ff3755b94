import io
from pathlib import Path

import pytest

import page2svg.cli as cli
import page2svg.core as core


def _use_fake_oracle(monkeypatch, fake_oracle, **kwargs):
    created = []

    def factory(*, font="TeX", extensions=""):
        instance = fake_oracle(font=font, extensions=extensions, **kwargs)
        created.append(instance)
        return instance

    monkeypatch.setattr(core, "MathJaxNodeOracle", factory)
    return created


def _set_stdin(monkeypatch, text: str) -> None:
    monkeypatch.setattr(cli.sys, "stdin", io.StringIO(text))


def test_version_flags_print_version(capsys):
    assert cli.main(["--version"]) == 0
    out = capsys.readouterr().out.strip()
    assert out == cli.__version__

    assert cli.main(["--ver"]) == 0
    out = capsys.readouterr().out.strip()
    assert out == cli.__version__


def test_help_shows_usage(capsys):
    assert cli.main(["--help"]) == 0
    out = capsys.readouterr().out
    assert "page2svg" in out
    assert cli.__version__ in out
    assert "--nodollars" in out


def test_unknown_option_shows_usage(capsys):
    assert cli.main(["--bogus"]) == 2
    assert "Usage:" in capsys.readouterr().out


@pytest.mark.parametrize(
    "argv, message",
    [
        (["--ex", "0"], "--ex"),
        (["--width", "-5"], "--width"),
        (["--timeout", "0"], "--timeout"),
        (["--eqno", "roman"], "--eqno"),
        (["--format", " , "], "--format"),
    ],
)
def test_invalid_values_are_rejected(capsys, argv, message):
    assert cli.main(argv) == core.EXIT_INVALID_ARGS
    assert message in capsys.readouterr().err


def test_convert_reads_stdin_and_writes_stdout(monkeypatch, capsys, fake_oracle):
    created = _use_fake_oracle(monkeypatch, fake_oracle)
    _set_stdin(monkeypatch, "<html><body><span>$x+y$</span></body></html>")

    assert cli.main(["--format", "TeX, AsciiMath", "--font", "STIX", "--speechrules", "chromevox"]) == 0

    out = capsys.readouterr().out
    assert out.startswith("<!DOCTYPE html>\n<html><head>")
    assert "$x+y$" not in out
    assert 'id="MathJax_SVG_Hidden"' in out

    request = created[0].requests[0]
    assert request.inputs == ("TeX", "AsciiMath")
    assert request.speak_ruleset == "default"
    assert created[0].font == "STIX"


def test_convert_with_img_prefix_writes_svg_files(monkeypatch, capsys, tmp_path, fake_oracle):
    monkeypatch.chdir(tmp_path)
    _use_fake_oracle(monkeypatch, fake_oracle)
    _set_stdin(monkeypatch, "<html><body><p>$a$ and $b$</p></body></html>")

    assert cli.main(["--img", "eq"]) == 0

    out = capsys.readouterr().out
    assert 'src="eq0001.svg"' in out
    assert 'src="eq0002.svg"' in out
    for name in ("eq0001.svg", "eq0002.svg"):
        text = (Path(tmp_path) / name).read_text(encoding="utf-8")
        assert text.startswith('<?xml version="1.0" standalone="no"?>')


def test_oracle_failure_returns_exit_code_and_no_output(monkeypatch, capsys, fake_oracle):
    _use_fake_oracle(monkeypatch, fake_oracle, error=core.OracleError("node not found"))
    _set_stdin(monkeypatch, "<p>$x$</p>")

    assert cli.main([]) == core.EXIT_ORACLE

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "node not found" in captured.err


def test_image_failure_returns_exit_code(monkeypatch, capsys, tmp_path, fake_oracle):
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    _use_fake_oracle(monkeypatch, fake_oracle)
    _set_stdin(monkeypatch, "<p>$x$</p>")

    assert cli.main(["--img", str(blocker / "eq")]) == core.EXIT_IMAGE_WRITE

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Image extraction failed" in captured.err


def test_other_conversion_failure_returns_exit_code(monkeypatch, capsys, fake_oracle):
    _use_fake_oracle(monkeypatch, fake_oracle, error=core.ConversionError("tree exploded"))
    _set_stdin(monkeypatch, "<p>$x$</p>")

    assert cli.main([]) == core.EXIT_CONVERSION

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "tree exploded" in captured.err
