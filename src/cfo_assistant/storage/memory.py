"""In-memory stores, with optional YAML persistence for transactions and rule counters."""

import dataclasses
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import yaml

from cfo_assistant.exceptions import NotFoundError, UpstreamError, ValidationError
from cfo_assistant.models.category import Category, CategoryRule
from cfo_assistant.models.transaction import TransactionRecord
from cfo_assistant.storage.base import (
    CategoryRuleStore,
    CategoryStore,
    TransactionFilter,
    TransactionStore,
)
from cfo_assistant.utils.logging_config import get_logger

logger = get_logger(__name__)

_RECORD_FIELDS = {f.name for f in dataclasses.fields(TransactionRecord)}
_RULE_FIELDS = {f.name for f in dataclasses.fields(CategoryRule)}


def _upsert_key(record: TransactionRecord) -> tuple[str, str, Optional[str], str]:
    return (record.user_id, record.tenant_id, record.external_id, record.kind.value)


def _check_patch(patch: dict[str, object], allowed: set[str], entity_id: str) -> None:
    unknown = sorted(set(patch) - allowed - {"id"})
    if "id" in patch or unknown:
        raise ValidationError(
            f"Cannot patch field(s): {', '.join(unknown or ['id'])}",
            entity_id=entity_id,
            operation="update",
        )


class InMemoryTransactionStore(TransactionStore):
    """Transaction store held in a dict keyed by record id.

    When a path is given, the store loads from it on creation and writes the
    full record set back after every create/update.
    """

    def __init__(self, path: Optional[Path] = None):
        """Initialize the store.

        Args:
            path: Optional YAML file to load from and persist to.
        """
        self.path = Path(path) if path is not None else None
        self._records: dict[str, TransactionRecord] = {}
        if self.path is not None and self.path.exists():
            self._load(self.path)

    def _load(self, path: Path) -> None:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise UpstreamError(
                f"Failed to load transaction store {path}: {e}",
                operation="load_store",
            ) from e

        for raw in data.get("transactions") or []:
            record = TransactionRecord.from_dict(raw)
            self._records[record.id] = record
        logger.info(f"Loaded {len(self._records)} transactions from {path}")

    def save(self) -> None:
        """Write all records to the store file (no-op without a path)."""
        self._persist(self._records.values())

    def _persist(self, records: Iterable[TransactionRecord]) -> None:
        if self.path is None:
            return

        ordered = self._sorted(records)
        data = {"transactions": [r.to_dict() for r in ordered]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise UpstreamError(
                f"Failed to save transaction store {self.path}: {e}",
                operation="save_store",
            ) from e
        logger.debug(f"Saved {len(ordered)} transactions to {self.path}")

    @staticmethod
    def _sorted(records: Iterable[TransactionRecord]) -> list[TransactionRecord]:
        return sorted(records, key=lambda r: (r.date, r.id))

    def __len__(self) -> int:
        return len(self._records)

    def find_one(self, tx_filter: TransactionFilter) -> Optional[TransactionRecord]:
        """Return the first record (by date, id) matching the filter."""
        if tx_filter.transaction_id is not None:
            record = self._records.get(tx_filter.transaction_id)
            return record if record is not None and tx_filter.matches(record) else None

        for record in self._sorted(self._records.values()):
            if tx_filter.matches(record):
                return record
        return None

    def find_all(self, tx_filter: TransactionFilter) -> list[TransactionRecord]:
        """Return all matching records ordered by date, then id."""
        matched = [r for r in self._sorted(self._records.values()) if tx_filter.matches(r)]
        if tx_filter.limit is not None:
            matched = matched[: tx_filter.limit]
        return matched

    def create(self, record: TransactionRecord) -> TransactionRecord:
        """Store a new record and persist."""
        record.validate()
        if record.id in self._records:
            raise ValidationError(
                f"Transaction {record.id} already exists",
                entity_id=record.id,
                operation="create_transaction",
            )
        if record.external_id is not None:
            key = _upsert_key(record)
            if any(_upsert_key(r) == key for r in self._records.values()):
                raise ValidationError(
                    f"Transaction for external id {record.external_id} already exists",
                    entity_id=record.external_id,
                    operation="create_transaction",
                )

        # Nothing is stored unless the file write succeeds
        self._persist([*self._records.values(), record])
        self._records[record.id] = record
        return record

    def update(self, record: TransactionRecord, patch: dict[str, object]) -> TransactionRecord:
        """Apply a patch atomically.

        The patched copy is validated and persisted before any in-memory
        record changes, so a failed save leaves the store untouched.
        """
        stored = self._records.get(record.id)
        if stored is None:
            raise NotFoundError(
                f"Transaction {record.id} not found",
                entity_id=record.id,
                operation="update_transaction",
            )
        _check_patch(patch, _RECORD_FIELDS, record.id)

        updated = dataclasses.replace(stored, **patch)  # type: ignore[arg-type]
        updated.validate()
        self._persist(
            [updated if r.id == stored.id else r for r in self._records.values()]
        )

        # Keep caller references current
        for name in patch:
            setattr(stored, name, getattr(updated, name))
        if record is not stored:
            for name in patch:
                setattr(record, name, getattr(updated, name))
        return stored


class InMemoryCategoryStore(CategoryStore):
    """Category store held in a dict keyed by category id."""

    def __init__(self, categories: Optional[Iterable[Category]] = None):
        self._categories: dict[str, Category] = {}
        for category in categories or []:
            self.create(category)

    def get(self, user_id: str, tenant_id: str, category_id: str) -> Optional[Category]:
        """Return a category owned by the user and tenant."""
        category = self._categories.get(category_id)
        if category is None or category.user_id != user_id or category.tenant_id != tenant_id:
            return None
        return category

    def list_active(self, user_id: str, tenant_id: str) -> list[Category]:
        """Return active categories ordered by name."""
        return sorted(
            (
                c for c in self._categories.values()
                if c.is_active and c.user_id == user_id and c.tenant_id == tenant_id
            ),
            key=lambda c: c.name,
        )

    def create(self, category: Category) -> Category:
        """Store a new category."""
        if category.id in self._categories:
            raise ValidationError(
                f"Category {category.id} already exists",
                entity_id=category.id,
                operation="create_category",
            )
        self._categories[category.id] = category
        return category


class InMemoryCategoryRuleStore(CategoryRuleStore):
    """Rule store held in a dict keyed by rule id.

    Rules themselves come from configuration. When ``counters_path`` is
    given, each rule's match counters are loaded from and written back to
    that YAML file so they survive across runs.
    """

    def __init__(
        self,
        rules: Optional[Iterable[CategoryRule]] = None,
        counters_path: Optional[Path] = None,
    ):
        self.counters_path = Path(counters_path) if counters_path is not None else None
        self._rules: dict[str, CategoryRule] = {}
        for rule in rules or []:
            self.create(rule)
        if self.counters_path is not None and self.counters_path.exists():
            self._load_counters(self.counters_path)

    def _load_counters(self, path: Path) -> None:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise UpstreamError(
                f"Failed to load rule counters {path}: {e}",
                operation="load_rule_counters",
            ) from e

        for rule_id, counters in (data.get("rules") or {}).items():
            rule = self._rules.get(rule_id)
            if rule is None or not isinstance(counters, dict):
                continue
            rule.match_count = int(counters.get("matchCount", 0))
            last_matched = counters.get("lastMatchedAt")
            rule.last_matched_at = (
                datetime.fromisoformat(str(last_matched)) if last_matched else None
            )
        logger.debug(f"Loaded rule counters from {path}")

    def _persist_counters(self, rules: Iterable[CategoryRule]) -> None:
        if self.counters_path is None:
            return

        data = {
            "rules": {
                r.id: {
                    "matchCount": r.match_count,
                    "lastMatchedAt": r.last_matched_at.isoformat() if r.last_matched_at else None,
                }
                for r in rules
                if r.match_count or r.last_matched_at
            }
        }
        try:
            self.counters_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.counters_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)
        except OSError as e:
            raise UpstreamError(
                f"Failed to save rule counters {self.counters_path}: {e}",
                operation="save_rule_counters",
            ) from e

    def list_active(
        self, user_id: str, tenant_id: str, automatic_only: bool = False
    ) -> list[CategoryRule]:
        """Return active rules by ascending priority (ties keep insertion order)."""
        rules = [
            r for r in self._rules.values()
            if r.is_active
            and r.user_id == user_id
            and r.tenant_id == tenant_id
            and (r.is_automatic or not automatic_only)
        ]
        return sorted(rules, key=lambda r: r.priority)

    def create(self, rule: CategoryRule) -> CategoryRule:
        """Store a new rule."""
        if rule.id in self._rules:
            raise ValidationError(
                f"Rule {rule.id} already exists",
                entity_id=rule.id,
                operation="create_rule",
            )
        self._rules[rule.id] = rule
        return rule

    def update(self, rule: CategoryRule, patch: dict[str, object]) -> CategoryRule:
        """Apply a patch to a stored rule, persisting counters first."""
        stored = self._rules.get(rule.id)
        if stored is None:
            raise NotFoundError(
                f"Rule {rule.id} not found",
                entity_id=rule.id,
                operation="update_rule",
            )
        _check_patch(patch, _RULE_FIELDS, rule.id)

        updated = dataclasses.replace(stored, **patch)  # type: ignore[arg-type]
        self._persist_counters(
            updated if r.id == stored.id else r for r in self._rules.values()
        )

        for name in patch:
            setattr(stored, name, getattr(updated, name))
        if rule is not stored:
            for name in patch:
                setattr(rule, name, getattr(updated, name))
        return stored
