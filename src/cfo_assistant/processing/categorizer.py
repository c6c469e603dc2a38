"""Transaction categorization using stored rules and manual assignment."""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Optional

from cfo_assistant.config import CategorizationConfig
from cfo_assistant.exceptions import NotFoundError, ValidationError
from cfo_assistant.models.batch import BatchResult
from cfo_assistant.models.category import (
    CategorizationStats,
    Category,
    CategoryRule,
    CategoryTally,
)
from cfo_assistant.models.transaction import TransactionRecord, TransactionStatus
from cfo_assistant.processing.rule_engine import find_matching_rule, validate_conditions
from cfo_assistant.storage.base import (
    CategoryRuleStore,
    CategoryStore,
    TransactionFilter,
    TransactionStore,
)
from cfo_assistant.utils.decimal_utils import sum_amounts
from cfo_assistant.utils.logging_config import LogContext, get_logger

logger = get_logger(__name__)

TOP_CATEGORY_COUNT = 5


class Categorizer:
    """Assigns categories to cached transactions.

    Automatic runs evaluate active, automatic rules in ascending priority
    order against uncategorized, non-voided transactions; the first rule
    whose conditions all hold wins. Already categorized transactions are
    never re-evaluated, so recategorization is always a manual step.
    """

    def __init__(
        self,
        transactions: TransactionStore,
        categories: CategoryStore,
        rules: CategoryRuleStore,
        config: Optional[CategorizationConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize categorizer.

        Args:
            transactions: Transaction record store.
            categories: Category store.
            rules: Categorization rule store.
            config: Categorization settings (defaults if None).
            clock: Returns the current time; injectable for tests.
        """
        self.transactions = transactions
        self.categories = categories
        self.rules = rules
        self.config = config or CategorizationConfig()
        self.clock = clock

    def get_categories(self, user_id: str, tenant_id: str) -> list[Category]:
        """List active categories ordered by name."""
        return self.categories.list_active(user_id, tenant_id)

    def get_category_rules(self, user_id: str, tenant_id: str) -> list[CategoryRule]:
        """List active rules in evaluation order."""
        return self.rules.list_active(user_id, tenant_id)

    def create_category(
        self, user_id: str, tenant_id: str, data: dict[str, object]
    ) -> Category:
        """Create a category from request data.

        Args:
            user_id: Owning user.
            tenant_id: Provider organization.
            data: Category fields (name and type required).

        Returns:
            The stored category.

        Raises:
            ValidationError: If required fields are missing.
            NotFoundError: If the parent category does not exist.
        """
        with LogContext(logger, "create_category", user_id=user_id, tenant_id=tenant_id):
            category = Category.from_dict(data)
            category.user_id = user_id
            category.tenant_id = tenant_id

            if category.parent_id is not None and self.categories.get(
                user_id, tenant_id, category.parent_id
            ) is None:
                raise NotFoundError(
                    f"Parent category {category.parent_id} not found",
                    entity_id=category.parent_id,
                    operation="create_category",
                )

            self.categories.create(category)
            logger.info(f"Created category '{category.name}' ({category.id})")
            return category

    def create_rule(
        self, user_id: str, tenant_id: str, data: dict[str, object]
    ) -> CategoryRule:
        """Create a categorization rule from request data.

        Args:
            user_id: Owning user.
            tenant_id: Provider organization.
            data: Rule fields (name, categoryId and conditions required).

        Returns:
            The stored rule.

        Raises:
            NotFoundError: If the target category is missing or inactive.
            ValidationError: If the conditions are malformed.
        """
        with LogContext(logger, "create_rule", user_id=user_id, tenant_id=tenant_id):
            rule = CategoryRule.from_dict(
                data, default_priority=self.config.default_rule_priority
            )

            category = self.categories.get(user_id, tenant_id, rule.category_id)
            if category is None or not category.is_active:
                raise NotFoundError(
                    f"Category {rule.category_id} not found",
                    entity_id=rule.category_id,
                    operation="create_rule",
                )

            validate_conditions(rule.conditions)

            rule.user_id = user_id
            rule.tenant_id = tenant_id
            rule.match_count = 0
            rule.last_matched_at = None
            self.rules.create(rule)
            logger.info(
                f"Created rule '{rule.name}' (priority {rule.priority}) "
                f"for category '{category.name}'"
            )
            return rule

    def apply_rules(
        self, user_id: str, tenant_id: str, limit: Optional[int] = None
    ) -> BatchResult:
        """Run automatic rules over uncategorized transactions.

        Each transaction is handled on its own: a failure is logged and
        tallied, and the batch continues.

        Args:
            user_id: Owning user.
            tenant_id: Provider organization.
            limit: Maximum transactions to process (config batch limit if None).

        Returns:
            Tally of categorized (succeeded), unmatched (skipped) and failed items.
        """
        result = BatchResult()

        with LogContext(logger, "apply_rules", user_id=user_id, tenant_id=tenant_id):
            rules = self.rules.list_active(user_id, tenant_id, automatic_only=True)
            if not rules:
                logger.info("No automatic categorization rules to apply")
                return result

            pending = self.transactions.find_all(TransactionFilter(
                user_id=user_id,
                tenant_id=tenant_id,
                categorized=False,
                exclude_statuses=(TransactionStatus.VOIDED,),
                limit=limit if limit is not None else self.config.batch_limit,
            ))

            for record in pending:
                try:
                    rule = find_matching_rule(record, rules)
                    if rule is None:
                        result.record_skip()
                        continue
                    self._apply_rule(record, rule)
                    result.record_success()
                except Exception as e:
                    logger.exception(f"Failed to categorize transaction {record.id}")
                    result.record_failure(record.id, getattr(e, "kind", type(e).__name__), str(e))

        logger.info(
            f"Applied categorization rules: {result.succeeded}/{result.total} "
            "transactions categorized"
        )
        if result.has_failures:
            logger.warning(f"{result.failed} transactions failed categorization")
        return result

    def _apply_rule(self, record: TransactionRecord, rule: CategoryRule) -> None:
        now = self.clock()
        metadata = dict(record.metadata)
        metadata["categorization"] = {
            "ruleId": rule.id,
            "ruleName": rule.name,
            "categoryId": rule.category_id,
            "date": now.isoformat(),
        }

        self.transactions.update(record, {
            "category_id": rule.category_id,
            "status": self._categorized_status(record),
            "metadata": metadata,
        })
        self.rules.update(rule, {
            "match_count": rule.match_count + 1,
            "last_matched_at": now,
        })
        logger.debug(f"Transaction {record.id} matched rule '{rule.name}'")

    @staticmethod
    def _categorized_status(record: TransactionRecord) -> TransactionStatus:
        # A reconciled record keeps RECONCILED status
        if record.is_reconciled:
            return TransactionStatus.RECONCILED
        return TransactionStatus.CATEGORIZED

    def categorize_transaction(
        self, user_id: str, tenant_id: str, transaction_id: str, category_id: str
    ) -> TransactionRecord:
        """Manually assign a category to one transaction.

        Raises:
            NotFoundError: If the category (active) or transaction is missing.
        """
        with LogContext(
            logger, "categorize_transaction",
            transaction_id=transaction_id, category_id=category_id,
        ):
            category = self.categories.get(user_id, tenant_id, category_id)
            if category is None or not category.is_active:
                raise NotFoundError(
                    f"Category {category_id} not found",
                    entity_id=category_id,
                    operation="categorize_transaction",
                )

            record = self.transactions.find_one(TransactionFilter(
                user_id=user_id, tenant_id=tenant_id, transaction_id=transaction_id,
            ))
            if record is None:
                raise NotFoundError(
                    f"Transaction {transaction_id} not found",
                    entity_id=transaction_id,
                    operation="categorize_transaction",
                )

            metadata = dict(record.metadata)
            metadata["categorization"] = {
                "categoryId": category.id,
                "categoryName": category.name,
                "date": self.clock().isoformat(),
                "method": "MANUAL",
            }
            self.transactions.update(record, {
                "category_id": category.id,
                "status": self._categorized_status(record),
                "metadata": metadata,
            })

        logger.info(f"Manually categorized transaction {transaction_id} with category {category_id}")
        return record

    def get_stats(
        self, user_id: str, tenant_id: str, days: Optional[int] = None
    ) -> CategorizationStats:
        """Summarize categorization over the last ``days`` days.

        Voided transactions are excluded. Top categories are ranked by
        transaction count.
        """
        days = days if days is not None else self.config.stats_days
        if days < 0:
            raise ValidationError(f"days must be non-negative, got {days}", operation="get_stats")

        to_date = self.clock().date()
        from_date = to_date - timedelta(days=days)

        records = self.transactions.find_all(TransactionFilter(
            user_id=user_id,
            tenant_id=tenant_id,
            exclude_statuses=(TransactionStatus.VOIDED,),
            date_from=from_date,
            date_to=to_date,
        ))

        by_category: dict[str, list[TransactionRecord]] = defaultdict(list)
        for record in records:
            if record.category_id is not None:
                by_category[record.category_id].append(record)

        ranked = sorted(by_category.items(), key=lambda item: (-len(item[1]), item[0]))
        top: list[CategoryTally] = []
        for category_id, members in ranked[:TOP_CATEGORY_COUNT]:
            category = self.categories.get(user_id, tenant_id, category_id)
            top.append(CategoryTally(
                category_id=category_id,
                name=category.name if category else category_id,
                category_type=category.category_type if category else None,
                count=len(members),
                total=sum_amounts(r.amount for r in members),
            ))

        return CategorizationStats(
            total=len(records),
            categorized=sum(len(m) for m in by_category.values()),
            from_date=from_date,
            to_date=to_date,
            top_categories=top,
        )
