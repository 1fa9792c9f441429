import re
from pathlib import Path


def _css():
    return (Path(__file__).resolve().parents[1] / "static" / "css" / "main.css").read_text(
        encoding="utf-8"
    )


def test_filter_pills_do_not_wrap():
    css = _css()
    match = re.search(r"\.filter-bar\s+\.pill[^{]*\{(?P<body>[^}]*)\}", css)
    assert match is not None
    assert re.search(r"white-space\s*:\s*nowrap\s*;", match.group("body"))
