"""Local stores for transactions, categories and categorization rules."""

from cfo_assistant.storage.base import (
    CategoryRuleStore,
    CategoryStore,
    TransactionFilter,
    TransactionStore,
)
from cfo_assistant.storage.memory import (
    InMemoryCategoryRuleStore,
    InMemoryCategoryStore,
    InMemoryTransactionStore,
)

__all__ = [
    "CategoryRuleStore",
    "CategoryStore",
    "TransactionFilter",
    "TransactionStore",
    "InMemoryCategoryRuleStore",
    "InMemoryCategoryStore",
    "InMemoryTransactionStore",
]
