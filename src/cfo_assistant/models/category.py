"""Category and categorization rule data models."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from cfo_assistant.exceptions import ValidationError
from cfo_assistant.utils.decimal_utils import format_currency

DEFAULT_RULE_PRIORITY = 100


class CategoryType(Enum):
    """Accounting class of a category."""

    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"


class ConditionOperator(Enum):
    """Operators a rule condition may use."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    IN = "in"
    NOT_IN = "notIn"


def _require(data: dict[str, object], key: str, entity: str) -> object:
    value = data.get(key)
    if value is None or value == "":
        raise ValidationError(f"{entity} is missing required field '{key}'")
    return value


@dataclass
class Category:
    """A user-defined category, optionally nested under a parent.

    Attributes:
        name: Display name.
        category_type: Accounting class.
        user_id: Owning user.
        tenant_id: Accounting-provider organization.
        account_code: Ledger account code this category maps to.
        parent_id: Parent category id (None for top level).
        description: Optional description.
        is_active: Inactive categories cannot be assigned.
        id: Unique identifier.
    """

    name: str
    category_type: CategoryType
    user_id: str = ""
    tenant_id: str = ""
    account_code: Optional[str] = None
    parent_id: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_subcategory(self) -> bool:
        """Check if this is a subcategory."""
        return self.parent_id is not None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Category":
        """Create a Category from a dictionary (e.g., from YAML config).

        Accepts both snake_case and camelCase keys.

        Args:
            data: Dictionary containing category data.

        Returns:
            A new Category instance.

        Raises:
            ValidationError: If name or type is missing or the type is unknown.
        """
        name = str(_require(data, "name", "Category"))
        type_str = str(_require(data, "type", "Category")).upper()
        try:
            category_type = CategoryType(type_str)
        except ValueError as e:
            raise ValidationError(f"Unknown category type '{type_str}'") from e

        account_code = data.get("account_code", data.get("accountCode"))
        parent_id = data.get("parent_id", data.get("parentId", data.get("parent")))

        category = cls(
            name=name,
            category_type=category_type,
            user_id=str(data.get("user_id", data.get("userId", ""))),
            tenant_id=str(data.get("tenant_id", data.get("tenantId", ""))),
            account_code=str(account_code) if account_code is not None else None,
            parent_id=str(parent_id) if parent_id is not None else None,
            description=str(data["description"]) if data.get("description") else None,
            is_active=bool(data.get("is_active", data.get("isActive", True))),
        )
        if data.get("id"):
            category.id = str(data["id"])
        return category

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.category_type.value,
            "accountCode": self.account_code,
            "parentId": self.parent_id,
            "description": self.description,
            "isActive": self.is_active,
        }

    def __repr__(self) -> str:
        return f"Category(id={self.id!r}, name={self.name!r}, type={self.category_type.value})"


@dataclass
class RuleCondition:
    """One ``field operator value`` test within a rule.

    The operator is kept as the raw string so that rules loaded from
    storage with an unknown operator still evaluate (to False) instead of
    failing to load.
    """

    field: str
    operator: str
    value: object = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "RuleCondition":
        """Create a condition from ``{field, operator, value}``."""
        if not isinstance(data, dict):
            raise ValidationError(f"Rule condition must be a mapping, got {type(data).__name__}")
        return cls(
            field=str(data.get("field", "")),
            operator=str(data.get("operator", "")),
            value=data.get("value"),
        )

    def to_dict(self) -> dict[str, object]:
        """Serialize to ``{field, operator, value}``."""
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass
class CategoryRule:
    """Rule for automatic transaction categorization.

    All conditions must hold (AND). Rules are evaluated in ascending
    priority order and the first full match wins.

    Attributes:
        name: Display name.
        category_id: Category assigned when the rule matches.
        conditions: Ordered conditions.
        user_id: Owning user.
        tenant_id: Accounting-provider organization.
        priority: Lower numbers are evaluated first.
        description: Optional description.
        is_active: Inactive rules are never evaluated.
        is_automatic: Whether the rule runs in automatic batches.
        match_count: Number of transactions the rule has categorized.
        last_matched_at: When the rule last matched.
        id: Unique identifier.
    """

    name: str
    category_id: str
    conditions: list[RuleCondition] = field(default_factory=list)
    user_id: str = ""
    tenant_id: str = ""
    priority: int = DEFAULT_RULE_PRIORITY
    description: Optional[str] = None
    is_active: bool = True
    is_automatic: bool = True
    match_count: int = 0
    last_matched_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_dict(
        cls,
        data: dict[str, object],
        default_priority: int = DEFAULT_RULE_PRIORITY,
    ) -> "CategoryRule":
        """Create a CategoryRule from a dictionary (e.g., from YAML config).

        Args:
            data: Dictionary containing rule data (snake_case or camelCase).
            default_priority: Priority used when none is given.

        Returns:
            A new CategoryRule instance.

        Raises:
            ValidationError: If required fields are missing or conditions
                are not a list.
        """
        name = str(_require(data, "name", "Category rule"))
        category_id = data.get("category_id", data.get("categoryId", data.get("category")))
        if not category_id:
            raise ValidationError(f"Category rule '{name}' is missing required field 'categoryId'")

        raw_conditions = data.get("conditions", [])
        if not isinstance(raw_conditions, list):
            raise ValidationError(
                f"Conditions of rule '{name}' must be a list, "
                f"got {type(raw_conditions).__name__}"
            )

        priority = data.get("priority")
        last_matched = data.get("last_matched_at", data.get("lastMatchedAt"))

        rule = cls(
            name=name,
            category_id=str(category_id),
            conditions=[RuleCondition.from_dict(c) for c in raw_conditions],
            user_id=str(data.get("user_id", data.get("userId", ""))),
            tenant_id=str(data.get("tenant_id", data.get("tenantId", ""))),
            priority=int(priority) if priority is not None else default_priority,  # type: ignore[call-overload]
            description=str(data["description"]) if data.get("description") else None,
            is_active=bool(data.get("is_active", data.get("isActive", True))),
            is_automatic=bool(data.get("is_automatic", data.get("isAutomatic", True))),
            match_count=int(data.get("match_count", data.get("matchCount", 0))),  # type: ignore[call-overload]
            last_matched_at=(
                datetime.fromisoformat(str(last_matched)) if last_matched else None
            ),
        )
        if data.get("id"):
            rule.id = str(data["id"])
        return rule

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "categoryId": self.category_id,
            "conditions": [c.to_dict() for c in self.conditions],
            "priority": self.priority,
            "description": self.description,
            "isActive": self.is_active,
            "isAutomatic": self.is_automatic,
            "matchCount": self.match_count,
            "lastMatchedAt": self.last_matched_at.isoformat() if self.last_matched_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"CategoryRule(id={self.id!r}, name={self.name!r}, "
            f"priority={self.priority}, category={self.category_id!r})"
        )


@dataclass
class CategoryTally:
    """Transaction count and summed amount for one category."""

    category_id: str
    name: str
    category_type: Optional[CategoryType]
    count: int
    total: Decimal

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "categoryId": self.category_id,
            "name": self.name,
            "type": self.category_type.value if self.category_type else None,
            "count": self.count,
            "total": format_currency(self.total),
        }


@dataclass
class CategorizationStats:
    """Categorization progress over a window of non-voided transactions."""

    total: int
    categorized: int
    from_date: date
    to_date: date
    top_categories: list[CategoryTally] = field(default_factory=list)

    @property
    def uncategorized(self) -> int:
        """Transactions still without a category."""
        return self.total - self.categorized

    @property
    def categorized_percentage(self) -> int:
        """Categorized share as a rounded percentage."""
        if self.total == 0:
            return 0
        return round(self.categorized / self.total * 100)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a camelCase dictionary."""
        return {
            "totalTransactions": self.total,
            "categorizedTransactions": self.categorized,
            "uncategorizedTransactions": self.uncategorized,
            "categorizedPercentage": self.categorized_percentage,
            "topCategories": [t.to_dict() for t in self.top_categories],
            "period": {
                "fromDate": self.from_date.isoformat(),
                "toDate": self.to_date.isoformat(),
                "days": (self.to_date - self.from_date).days,
            },
        }
