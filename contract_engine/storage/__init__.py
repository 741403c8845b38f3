"""Storage modules."""
from .rule_store import RuleStore, InMemoryRuleStore, UpsertOutcome
from .sql_rule_store import SQLRuleStore, create_rule_store

__all__ = [
    "RuleStore",
    "InMemoryRuleStore",
    "UpsertOutcome",
    "SQLRuleStore",
    "create_rule_store",
]
