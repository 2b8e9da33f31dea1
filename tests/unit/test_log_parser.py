"""Unit tests for LaTeX log parsing and rerun detection."""

import pytest

from texforge.contexts.compilation.log_parser import LogParser, needs_another_pass, parse_log
from texforge.contexts.compilation.models import ErrorKind, WarningKind


@pytest.mark.unit
def test_undefined_control_sequence_with_location():
    """Test file:line error lines produce a positioned error."""
    parsed = parse_log("./document.tex:5: Undefined control sequence.")

    assert len(parsed.errors) == 1
    error = parsed.errors[0]
    assert error.kind == ErrorKind.ERROR
    assert error.line == 5
    assert error.file == "document.tex"
    assert error.message == "Undefined control sequence"
    assert parsed.warnings == []


@pytest.mark.unit
def test_latex_error_with_location():
    """Test 'LaTeX Error:' lines keep the message after the keyword."""
    parsed = parse_log(
        "/tmp/texforge/job_1/document.tex:12: LaTeX Error: Environment foo undefined."
    )

    assert len(parsed.errors) == 1
    assert parsed.errors[0].file == "document.tex"
    assert parsed.errors[0].line == 12
    assert parsed.errors[0].message == "Environment foo undefined."


@pytest.mark.unit
def test_bang_line_is_fatal_without_position():
    """Test lines starting with '!' are fatal errors with no file or line."""
    parsed = parse_log("! Emergency stop.")

    assert len(parsed.errors) == 1
    assert parsed.errors[0].kind == ErrorKind.FATAL
    assert parsed.errors[0].message == "Emergency stop."
    assert parsed.errors[0].file is None
    assert parsed.errors[0].line is None


@pytest.mark.unit
def test_package_warning_mentions_package():
    """Test package warnings are prefixed with the package name."""
    parsed = parse_log("Package babel Warning: No hyphenation patterns were preloaded")

    assert parsed.errors == []
    assert len(parsed.warnings) == 1
    assert parsed.warnings[0].kind == WarningKind.WARNING
    assert "babel" in parsed.warnings[0].message
    assert parsed.warnings[0].message == "babel: No hyphenation patterns were preloaded"


@pytest.mark.unit
def test_package_info_is_informational():
    """Test package info messages are reported as info."""
    parsed = parse_log("Package hyperref Info: Option `colorlinks' set `true'")

    assert len(parsed.warnings) == 1
    assert parsed.warnings[0].kind == WarningKind.INFO
    assert parsed.warnings[0].message.startswith("hyperref: ")


@pytest.mark.unit
@pytest.mark.parametrize(
    "line",
    [
        "Warning: something odd happened",
        "LaTeX Warning: Reference `fig:1' on page 1 undefined on input line 7.",
        "LaTeX Font Warning: Font shape `OT1/cmr/bx/sc' undefined",
    ],
)
def test_bare_warnings(line):
    """Test warnings without a file position."""
    parsed = parse_log(line)

    assert len(parsed.warnings) == 1
    assert parsed.warnings[0].kind == WarningKind.WARNING
    assert parsed.warnings[0].file is None


@pytest.mark.unit
def test_file_line_warning():
    """Test positioned warnings keep file and line."""
    parsed = parse_log("./document.tex:9: LaTeX Warning: Citation `knuth' undefined.")

    assert parsed.errors == []
    assert len(parsed.warnings) == 1
    assert parsed.warnings[0].line == 9
    assert parsed.warnings[0].file == "document.tex"
    assert parsed.warnings[0].message == "Citation `knuth' undefined."


@pytest.mark.unit
def test_bad_box_is_info_with_line():
    """Test over/underfull box reports become info with their first line."""
    parsed = parse_log(
        "Overfull \\hbox (15.0pt too wide) in paragraph at lines 10--12\n"
        "Underfull \\vbox (badness 10000) has occurred while \\output is active"
    )

    assert len(parsed.warnings) == 2
    assert all(w.kind == WarningKind.INFO for w in parsed.warnings)
    assert parsed.warnings[0].line == 10
    assert parsed.warnings[1].line is None


@pytest.mark.unit
@pytest.mark.parametrize("log", ["", None, "This is pdfTeX, Version 3.14\nentering extended mode"])
def test_unrecognised_text_yields_nothing(log):
    """Test unmatched input produces empty lists instead of raising."""
    parsed = parse_log(log)

    assert parsed.errors == []
    assert parsed.warnings == []


@pytest.mark.unit
def test_diagnostics_keep_log_order_and_context():
    """Test ordering and the two-line context window."""
    log = "\n".join(
        [
            "line a",
            "line b",
            "./document.tex:3: Undefined control sequence.",
            "l.3 \\foo",
            "line c",
            "line d",
            "! Emergency stop.",
        ]
    )
    parsed = parse_log(log)

    assert [e.kind for e in parsed.errors] == [ErrorKind.ERROR, ErrorKind.FATAL]
    assert parsed.errors[0].context == "\n".join(log.splitlines()[0:5])
    assert parsed.errors[1].context == "line c\nline d\n! Emergency stop."


@pytest.mark.unit
def test_error_wins_over_warning_on_same_line():
    """Test a line matching both patterns counts only as an error."""
    parsed = parse_log("./document.tex:4: Package foo Error: Warning: broken")

    assert len(parsed.errors) == 1
    assert parsed.warnings == []


@pytest.mark.unit
@pytest.mark.parametrize(
    "log",
    [
        "LaTeX Warning: Label(s) may have changed. Rerun to get cross-references right.",
        "LaTeX Warning: There were undefined references.",
        "RERUN TO GET CROSS-REFERENCES RIGHT",
    ],
)
def test_needs_another_pass_detects_markers(log):
    """Test rerun markers are found case-insensitively."""
    assert needs_another_pass(log) is True


@pytest.mark.unit
def test_needs_another_pass_false_for_clean_log():
    """Test clean logs do not request another pass."""
    assert needs_another_pass("Output written on document.pdf (1 page).") is False
    assert needs_another_pass(None) is False


@pytest.mark.unit
def test_custom_rerun_markers_replace_defaults():
    """Test configured markers replace the built-in list."""
    parser = LogParser(rerun_markers=["Please rerun BibTeX"])

    assert parser.needs_another_pass("Package natbib Warning: please rerun bibtex") is True
    assert parser.needs_another_pass("There were undefined references") is False
