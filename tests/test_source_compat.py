"""Source compatibility checks for the supported Python versions."""
import ast
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
PACKAGES = ['identity', 'descriptions', 'storage', 'calendar_source', 'scanner']


def project_sources():
    sources = [PROJECT_ROOT / 'lambda_function.py']
    for package in PACKAGES:
        sources.extend(sorted((PROJECT_ROOT / package).glob('*.py')))
    return sources


@pytest.mark.parametrize('path', project_sources(), ids=lambda p: p.name)
def test_fstring_expressions_have_no_backslashes(path):
    """Interpreters before 3.12 reject backslashes inside f-string expressions."""
    tree = ast.parse(path.read_text(encoding='utf-8'), filename=str(path))

    offending = [
        node.lineno
        for node in ast.walk(tree)
        if isinstance(node, ast.FormattedValue) and '\\' in ast.unparse(node.value)
    ]

    assert offending == []
