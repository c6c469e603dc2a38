"""Tests for rule-based and manual transaction categorization."""

from datetime import date, datetime
from typing import Callable
from unittest.mock import patch

import pytest

from cfo_assistant.exceptions import NotFoundError, ValidationError
from cfo_assistant.models.category import Category, CategoryRule, CategoryType, RuleCondition
from cfo_assistant.models.transaction import TransactionStatus
from cfo_assistant.processing.categorizer import Categorizer
from cfo_assistant.storage.base import TransactionFilter
from cfo_assistant.storage.memory import (
    InMemoryCategoryRuleStore,
    InMemoryCategoryStore,
    InMemoryTransactionStore,
)
from factories import FIXED_NOW, make_record


def store_filter(transaction_id: str) -> TransactionFilter:
    return TransactionFilter(user_id="u1", tenant_id="t1", transaction_id=transaction_id)


@pytest.fixture
def store() -> InMemoryTransactionStore:
    """Transaction store with fee, rent and sales records."""
    transactions = InMemoryTransactionStore()
    transactions.create(make_record(amount="-15.00", description="Monthly account fee", id="tx-fee"))
    transactions.create(make_record(
        amount="-2500.00", description="June rent", contact_name="Landlord Pty", id="tx-rent",
    ))
    transactions.create(make_record(amount="900.00", description="Customer payment", id="tx-sale"))
    return transactions


@pytest.fixture
def categories() -> InMemoryCategoryStore:
    """Active bank-fees and rent categories, plus an inactive one."""
    return InMemoryCategoryStore([
        Category(name="Bank Fees", category_type=CategoryType.EXPENSE, user_id="u1", tenant_id="t1", id="bank-fees"),
        Category(name="Rent", category_type=CategoryType.EXPENSE, user_id="u1", tenant_id="t1", id="rent"),
        Category(
            name="Retired", category_type=CategoryType.EXPENSE, user_id="u1", tenant_id="t1",
            id="retired", is_active=False,
        ),
    ])


@pytest.fixture
def rules() -> InMemoryCategoryRuleStore:
    """Fee and rent rules."""
    return InMemoryCategoryRuleStore([
        CategoryRule(
            name="Bank fees",
            category_id="bank-fees",
            conditions=[
                RuleCondition(field="description", operator="contains", value="fee"),
                RuleCondition(field="amount", operator="lessThan", value=0),
            ],
            user_id="u1",
            tenant_id="t1",
            priority=10,
            id="rule-fees",
        ),
        CategoryRule(
            name="Rent",
            category_id="rent",
            conditions=[RuleCondition(field="contactName", operator="in", value=["Landlord Pty"])],
            user_id="u1",
            tenant_id="t1",
            priority=20,
            id="rule-rent",
        ),
    ])


@pytest.fixture
def categorizer(
    store: InMemoryTransactionStore,
    categories: InMemoryCategoryStore,
    rules: InMemoryCategoryRuleStore,
    clock: Callable[[], datetime],
) -> Categorizer:
    """Categorizer over the in-memory stores with a frozen clock."""
    return Categorizer(store, categories, rules, clock=clock)


class TestApplyRules:
    """Tests for automatic rule runs."""

    def test_matching_transactions_are_categorized(
        self, categorizer: Categorizer, store: InMemoryTransactionStore
    ) -> None:
        """Test that matches get a category, CATEGORIZED status and rule metadata."""
        result = categorizer.apply_rules("u1", "t1")

        assert result.total == 3
        assert result.succeeded == 2
        assert result.skipped == 1
        assert not result.has_failures

        fee = store.find_one(store_filter("tx-fee"))
        assert fee is not None
        assert fee.category_id == "bank-fees"
        assert fee.status == TransactionStatus.CATEGORIZED
        assert fee.get_metadata("categorization.ruleId") == "rule-fees"
        assert fee.get_metadata("categorization.ruleName") == "Bank fees"

        sale = store.find_one(store_filter("tx-sale"))
        assert sale is not None
        assert sale.category_id is None
        assert sale.status == TransactionStatus.PENDING

    def test_rule_match_counters_updated(
        self, categorizer: Categorizer, rules: InMemoryCategoryRuleStore
    ) -> None:
        """Test that matchCount and lastMatchedAt advance on each match."""
        categorizer.apply_rules("u1", "t1")

        fee_rule, rent_rule = rules.list_active("u1", "t1")
        assert fee_rule.match_count == 1
        assert fee_rule.last_matched_at == FIXED_NOW
        assert rent_rule.match_count == 1

    def test_categorized_transactions_are_not_reprocessed(
        self, categorizer: Categorizer, rules: InMemoryCategoryRuleStore
    ) -> None:
        """Test that a second run leaves already categorized records alone."""
        categorizer.apply_rules("u1", "t1")
        result = categorizer.apply_rules("u1", "t1")

        assert result.succeeded == 0
        assert result.total == 1
        assert rules.list_active("u1", "t1")[0].match_count == 1

    def test_voided_transactions_are_skipped(
        self, categorizer: Categorizer, store: InMemoryTransactionStore
    ) -> None:
        """Test that VOIDED records are never considered."""
        store.create(make_record(
            amount="-9.00", description="Reversed fee", status=TransactionStatus.VOIDED, id="tx-void",
        ))
        categorizer.apply_rules("u1", "t1")

        voided = store.find_one(store_filter("tx-void"))
        assert voided is not None
        assert voided.category_id is None

    def test_limit_bounds_batch(self, categorizer: Categorizer) -> None:
        """Test that only ``limit`` transactions are processed."""
        result = categorizer.apply_rules("u1", "t1", limit=1)
        assert result.total == 1

    def test_failure_is_isolated_per_item(
        self, categorizer: Categorizer, store: InMemoryTransactionStore
    ) -> None:
        """Test that one failing update is tallied and the batch continues."""
        original_update = store.update

        def flaky_update(record, patch_data):  # type: ignore[no-untyped-def]
            if record.id == "tx-fee":
                raise ValidationError("store rejected update", entity_id=record.id)
            return original_update(record, patch_data)

        with patch.object(store, "update", side_effect=flaky_update):
            result = categorizer.apply_rules("u1", "t1")

        assert result.failed == 1
        assert result.succeeded == 1
        assert result.errors[0].item_id == "tx-fee"
        assert result.errors[0].kind == "VALIDATION_FAILURE"

    def test_no_rules_is_empty_result(
        self,
        store: InMemoryTransactionStore,
        categories: InMemoryCategoryStore,
        clock: Callable[[], datetime],
    ) -> None:
        """Test that a tenant without rules processes nothing."""
        categorizer = Categorizer(store, categories, InMemoryCategoryRuleStore(), clock=clock)
        assert categorizer.apply_rules("u1", "t1").total == 0


class TestManualCategorization:
    """Tests for categorize_transaction."""

    def test_assigns_category(self, categorizer: Categorizer) -> None:
        """Test manual assignment records the method in metadata."""
        record = categorizer.categorize_transaction("u1", "t1", "tx-sale", "rent")

        assert record.category_id == "rent"
        assert record.status == TransactionStatus.CATEGORIZED
        assert record.get_metadata("categorization.method") == "MANUAL"
        assert record.get_metadata("categorization.categoryName") == "Rent"

    def test_reconciled_record_keeps_status(
        self, categorizer: Categorizer, store: InMemoryTransactionStore
    ) -> None:
        """Test that categorizing a reconciled record keeps RECONCILED."""
        store.create(make_record(
            id="tx-rec",
            status=TransactionStatus.RECONCILED,
            is_reconciled=True,
            reconciliation_date=FIXED_NOW,
        ))
        record = categorizer.categorize_transaction("u1", "t1", "tx-rec", "rent")
        assert record.status == TransactionStatus.RECONCILED

    def test_inactive_category_not_found(self, categorizer: Categorizer) -> None:
        """Test that an inactive category cannot be assigned."""
        with pytest.raises(NotFoundError):
            categorizer.categorize_transaction("u1", "t1", "tx-sale", "retired")

    def test_unknown_transaction_not_found(self, categorizer: Categorizer) -> None:
        """Test that a missing transaction raises NotFoundError."""
        with pytest.raises(NotFoundError, match="Transaction missing not found"):
            categorizer.categorize_transaction("u1", "t1", "missing", "rent")

    def test_other_tenant_cannot_see_transaction(self, categorizer: Categorizer) -> None:
        """Test tenant isolation."""
        with pytest.raises(NotFoundError):
            categorizer.categorize_transaction("u1", "t2", "tx-sale", "rent")


class TestListing:
    """Tests for listing categories and rules."""

    def test_active_categories_by_name(self, categorizer: Categorizer) -> None:
        """Test that inactive categories are hidden and the rest are sorted by name."""
        assert [c.id for c in categorizer.get_categories("u1", "t1")] == ["bank-fees", "rent"]
        assert categorizer.get_categories("u2", "t1") == []

    def test_rules_in_evaluation_order(self, categorizer: Categorizer) -> None:
        """Test that rules come back in ascending priority."""
        rules = categorizer.get_category_rules("u1", "t1")
        assert [r.id for r in rules] == ["rule-fees", "rule-rent"]
        assert categorizer.get_category_rules("u1", "t2") == []


class TestCreateRule:
    """Tests for rule creation."""

    def test_creates_rule_with_default_priority(
        self, categorizer: Categorizer, rules: InMemoryCategoryRuleStore
    ) -> None:
        """Test that a rule without a priority gets the configured default."""
        rule = categorizer.create_rule("u1", "t1", {
            "name": "Payroll",
            "categoryId": "rent",
            "conditions": [{"field": "reference", "operator": "startsWith", "value": "PAYRUN"}],
        })

        assert rule.priority == 100
        assert rule.user_id == "u1"
        assert rule in rules.list_active("u1", "t1")

    def test_rejects_malformed_conditions(self, categorizer: Categorizer) -> None:
        """Test that validation happens before the rule is stored."""
        with pytest.raises(ValidationError):
            categorizer.create_rule("u1", "t1", {"name": "Empty", "categoryId": "rent", "conditions": []})

    def test_rejects_unknown_category(self, categorizer: Categorizer) -> None:
        """Test that a rule must target an existing active category."""
        with pytest.raises(NotFoundError):
            categorizer.create_rule("u1", "t1", {
                "name": "Ghost",
                "categoryId": "nope",
                "conditions": [{"field": "amount", "operator": "lessThan", "value": 0}],
            })


class TestCreateCategory:
    """Tests for category creation."""

    def test_creates_subcategory(self, categorizer: Categorizer) -> None:
        """Test creating a category under an existing parent."""
        category = categorizer.create_category(
            "u1", "t1", {"name": "Card fees", "type": "expense", "parentId": "bank-fees"}
        )
        assert category.is_subcategory
        assert category.category_type == CategoryType.EXPENSE

    def test_missing_parent_not_found(self, categorizer: Categorizer) -> None:
        """Test that the parent must exist."""
        with pytest.raises(NotFoundError):
            categorizer.create_category("u1", "t1", {"name": "Orphan", "type": "EXPENSE", "parentId": "x"})

    def test_missing_name_rejected(self, categorizer: Categorizer) -> None:
        """Test required field validation."""
        with pytest.raises(ValidationError, match="name"):
            categorizer.create_category("u1", "t1", {"type": "EXPENSE"})


class TestStats:
    """Tests for categorization statistics."""

    def test_counts_and_top_categories(self, categorizer: Categorizer) -> None:
        """Test totals, percentage and top category ranking."""
        categorizer.apply_rules("u1", "t1")
        stats = categorizer.get_stats("u1", "t1", days=30)

        assert stats.total == 3
        assert stats.categorized == 2
        assert stats.uncategorized == 1
        assert stats.categorized_percentage == 67
        assert stats.from_date == date(2024, 5, 16)
        assert [t.category_id for t in stats.top_categories] == ["bank-fees", "rent"]

    def test_negative_days_rejected(self, categorizer: Categorizer) -> None:
        """Test that a negative window is a validation failure."""
        with pytest.raises(ValidationError):
            categorizer.get_stats("u1", "t1", days=-1)
