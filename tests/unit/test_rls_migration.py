"""
The RLS migration is loaded from its file and run against a mocked alembic op.
"""

import importlib.util
import re
from pathlib import Path
from unittest.mock import MagicMock

MIGRATION = (
    Path(__file__).resolve().parents[2]
    / "migrations" / "versions" / "5b7e0d4c2a91_enable_rls_policies.py"
)


def _run(step: str) -> list[str]:
    spec = importlib.util.spec_from_file_location("rls_migration", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    module.op = MagicMock()
    getattr(module, step)()
    return [" ".join(c.args[0].split()) for c in module.op.execute.call_args_list]


def _tables(statements: list[str], action: str) -> set[str]:
    pattern = re.compile(rf"ALTER TABLE (\w+) {action} ROW LEVEL SECURITY$")
    matches = (pattern.match(s) for s in statements)
    return {m.group(1) for m in matches if m}


def test_every_rls_table_is_forced():
    statements = _run("upgrade")
    enabled = _tables(statements, "ENABLE")

    assert "acumatica_invoices" in enabled
    assert "user_profiles" in enabled
    assert _tables(statements, "FORCE") == enabled


def test_downgrade_drops_force():
    statements = _run("downgrade")
    assert _tables(statements, "NO FORCE") == _tables(statements, "DISABLE")
