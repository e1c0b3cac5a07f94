"""
Tests for the bcverify command-line entry point.
"""

import json
import subprocess
import sys

from bcverify.cli import main


GOOD = {
    "name": "demo/Good",
    "methods": [
        {"name": "answer", "descriptor": "()I", "flags": ["static"],
         "max_stack": 1, "max_locals": 0,
         "code": [[0, "iconst", 42], [1, "return", "I"], [2, "nop"], [3, "return", "I"]]},
    ],
}

BAD = {
    "name": "demo/Bad",
    "methods": [
        {"name": "broken", "descriptor": "(I)I", "flags": ["static"],
         "max_stack": 1, "max_locals": 1,
         "code": [[0, "load", "I", 0], [1, "if", 4], [2, "iconst", 1], [3, "goto", 5],
                  [4, "aconst_null"], [5, "return", "I"]]},
    ],
}


def _write_units(tmp_path, *docs):
    for doc in docs:
        path = tmp_path / (doc["name"] + ".json")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(doc))


def _run(*args):
    return subprocess.run(
        [sys.executable, "-m", "bcverify", *args],
        capture_output=True,
        text=True,
    )


def test_cli_exists():
    """The CLI module can be executed and prints its help."""
    result = _run("--help")
    assert result.returncode == 0
    assert "bcverify" in result.stdout


def test_cli_requires_a_unit():
    result = _run()
    assert result.returncode == 2


def test_cli_verifies_good_unit(tmp_path):
    _write_units(tmp_path, GOOD)
    result = _run("--path", str(tmp_path), "demo/Good.json")
    assert result.returncode == 0, result.stdout
    assert "Now verifying: demo.Good" in result.stdout
    assert "Pass 3b, method number 0 ['answer()I']:\nVERIFIED_OK" in result.stdout
    assert "Warnings:" in result.stdout
    assert "Pass 3a, method 0 ('answer()I'): Unreachable code at offset 2." in result.stdout


def test_cli_reports_rejected_unit(tmp_path):
    _write_units(tmp_path, GOOD, BAD)
    result = _run("--path", str(tmp_path), "--strategy", "fifo", "demo.Good", "demo.Bad")
    assert result.returncode == 1
    assert "VERIFIED_REJECTED" in result.stdout
    assert "TypeConstraintViolation at offset 5" in result.stdout


def test_cli_missing_unit(tmp_path):
    result = _run("--path", str(tmp_path), "demo.Nowhere")
    assert result.returncode == 1
    assert "Loading failed" in result.stdout
    assert "Pass 2 requires Pass 1 to succeed." in result.stdout


def test_main_in_process(tmp_path, capsys):
    _write_units(tmp_path, BAD)
    assert main(["--path", str(tmp_path), "--jobs", "2", "demo/Bad"]) == 1
    out = capsys.readouterr().out
    assert "Pass 1:\nVERIFIED_OK" in out
    assert "<none>" in out
