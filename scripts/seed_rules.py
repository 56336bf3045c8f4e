"""Load automation rule definitions from a JSON file into automation_rules.

Usage:
    uv run python -m scripts.seed_rules <rules.json>
The file holds a list of rule objects (camelCase or snake_case keys). Every
rule is parsed before anything is written; existing rules with the same id
are replaced, keeping their trigger bookkeeping.
"""

import asyncio
import json
import sys
from pathlib import Path

from sellerops.core.config import get_settings
from sellerops.domain.entities import rule_from_dict
from sellerops.domain.exceptions import RuleDefinitionException
from sellerops.infrastructure.persistence.database import dispose_engine, get_session_factory
from sellerops.infrastructure.persistence.stores import SqlRuleSource


async def main() -> None:
    if len(sys.argv) < 2:
        print("Usage: uv run python -m scripts.seed_rules <rules.json>", file=sys.stderr)
        sys.exit(1)
    settings = get_settings()
    raw = json.loads(Path(sys.argv[1]).read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        print("Rules file must contain a JSON list", file=sys.stderr)
        sys.exit(1)
    try:
        rules = [rule_from_dict(r, settings.default_cooldown_seconds) for r in raw]
    except RuleDefinitionException as e:
        print(f"Invalid rule: {e.message} {e.details}", file=sys.stderr)
        sys.exit(1)

    source = SqlRuleSource(get_session_factory(), settings.default_cooldown_seconds)
    try:
        for rule in rules:
            await source.save_rule(rule)
            print(f"Saved rule {rule.id} ({rule.trigger_kind.value})")
    finally:
        await dispose_engine()
    print(f"Done. {len(rules)} rule(s) saved.")


if __name__ == "__main__":
    asyncio.run(main())
