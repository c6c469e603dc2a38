"""Evaluation of categorization rule conditions against transaction records.

Conditions name a transaction field through a closed resolver table (or a
``metadata.<dotted.path>`` lookup) and compare it with the condition value.
Evaluation never raises: a missing field, a type mismatch or an unknown
operator simply fails the condition.
"""

from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, Optional, Sequence

from cfo_assistant.exceptions import ValidationError
from cfo_assistant.models.category import CategoryRule, ConditionOperator, RuleCondition
from cfo_assistant.models.transaction import TransactionRecord
from cfo_assistant.utils.logging_config import get_logger

logger = get_logger(__name__)

METADATA_PREFIX = "metadata."

FieldResolver = Callable[[TransactionRecord], object]

FIELD_RESOLVERS: dict[str, FieldResolver] = {
    "description": lambda t: t.description,
    "reference": lambda t: t.reference,
    "amount": lambda t: t.amount,
    "contactName": lambda t: t.contact_name,
    "contactId": lambda t: t.contact_id,
    "accountName": lambda t: t.account_name,
    "accountCode": lambda t: t.account_code,
    "accountId": lambda t: t.account_id,
    "externalId": lambda t: t.external_id,
    "type": lambda t: t.kind.value,
    "status": lambda t: t.status.value,
    "date": lambda t: t.date.isoformat(),
}

# snake_case aliases for rules written in YAML
FIELD_RESOLVERS.update({
    "contact_name": FIELD_RESOLVERS["contactName"],
    "contact_id": FIELD_RESOLVERS["contactId"],
    "account_name": FIELD_RESOLVERS["accountName"],
    "account_code": FIELD_RESOLVERS["accountCode"],
    "account_id": FIELD_RESOLVERS["accountId"],
    "external_id": FIELD_RESOLVERS["externalId"],
})

STRING_OPERATORS = {
    ConditionOperator.CONTAINS.value,
    ConditionOperator.NOT_CONTAINS.value,
    ConditionOperator.STARTS_WITH.value,
    ConditionOperator.ENDS_WITH.value,
}
NUMERIC_OPERATORS = {
    ConditionOperator.GREATER_THAN.value,
    ConditionOperator.LESS_THAN.value,
    ConditionOperator.GREATER_THAN_OR_EQUAL.value,
    ConditionOperator.LESS_THAN_OR_EQUAL.value,
}
MEMBERSHIP_OPERATORS = {ConditionOperator.IN.value, ConditionOperator.NOT_IN.value}
KNOWN_OPERATORS = {op.value for op in ConditionOperator}


def resolve_field(record: TransactionRecord, field_name: str) -> object:
    """Look up a condition field on a transaction.

    Args:
        record: Transaction to read from.
        field_name: Known field name or ``metadata.<path>``.

    Returns:
        The field value, or None if the field is unknown or unset.
    """
    if field_name.startswith(METADATA_PREFIX):
        return record.get_metadata(field_name[len(METADATA_PREFIX):])

    resolver = FIELD_RESOLVERS.get(field_name)
    if resolver is None:
        return None
    return resolver(record)


def _as_number(value: object) -> Optional[Decimal]:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def _values_equal(field_value: object, value: object) -> bool:
    left = _as_number(field_value)
    right = _as_number(value)
    if left is not None and right is not None:
        return left == right
    return field_value == value


def _contains(values: object, field_value: object) -> bool:
    return any(_values_equal(field_value, v) for v in values)  # type: ignore[attr-defined]


def evaluate_condition(record: TransactionRecord, condition: RuleCondition) -> bool:
    """Evaluate a single condition.

    Args:
        record: Transaction to test.
        condition: Condition to evaluate.

    Returns:
        True if the condition holds.
    """
    field_value = resolve_field(record, condition.field)
    if field_value is None:
        return False

    operator = condition.operator
    value = condition.value

    if operator == ConditionOperator.EQUALS.value:
        return _values_equal(field_value, value)
    if operator == ConditionOperator.NOT_EQUALS.value:
        return not _values_equal(field_value, value)

    if operator in STRING_OPERATORS:
        if not isinstance(field_value, str) or not isinstance(value, str):
            return False
        haystack = field_value.lower()
        needle = value.lower()
        if operator == ConditionOperator.CONTAINS.value:
            return needle in haystack
        if operator == ConditionOperator.NOT_CONTAINS.value:
            return needle not in haystack
        if operator == ConditionOperator.STARTS_WITH.value:
            return haystack.startswith(needle)
        return haystack.endswith(needle)

    if operator in NUMERIC_OPERATORS:
        left = _as_number(field_value)
        right = _as_number(value)
        if left is None or right is None:
            return False
        if operator == ConditionOperator.GREATER_THAN.value:
            return left > right
        if operator == ConditionOperator.LESS_THAN.value:
            return left < right
        if operator == ConditionOperator.GREATER_THAN_OR_EQUAL.value:
            return left >= right
        return left <= right

    if operator in MEMBERSHIP_OPERATORS:
        if not isinstance(value, (list, tuple, set)):
            return False
        found = _contains(value, field_value)
        return found if operator == ConditionOperator.IN.value else not found

    logger.debug(f"Unknown rule operator '{operator}' on field '{condition.field}'")
    return False


def evaluate_conditions(record: TransactionRecord, conditions: Sequence[RuleCondition]) -> bool:
    """Check whether every condition holds (AND).

    An empty condition list never matches.

    Args:
        record: Transaction to test.
        conditions: Conditions of one rule.

    Returns:
        True if the list is non-empty and all conditions hold.
    """
    if not conditions:
        return False
    return all(evaluate_condition(record, c) for c in conditions)


def find_matching_rule(
    record: TransactionRecord,
    rules: Iterable[CategoryRule],
) -> Optional[CategoryRule]:
    """Find the first rule whose conditions all hold.

    Args:
        record: Transaction to categorize.
        rules: Candidate rules; evaluated in ascending priority order.

    Returns:
        The winning rule, or None.
    """
    for rule in sorted(rules, key=lambda r: r.priority):
        if evaluate_conditions(record, rule.conditions):
            return rule
    return None


def validate_conditions(conditions: Sequence[RuleCondition]) -> None:
    """Reject malformed conditions before a rule is stored.

    Args:
        conditions: Conditions of a new rule.

    Raises:
        ValidationError: If the list is empty or a condition is malformed.
    """
    if not conditions:
        raise ValidationError("Rule must have at least one condition", operation="create_rule")

    for index, condition in enumerate(conditions):
        where = f"Condition {index + 1}"
        if not condition.field:
            raise ValidationError(f"{where} is missing a field", operation="create_rule")
        if condition.operator not in KNOWN_OPERATORS:
            raise ValidationError(
                f"{where} has unknown operator '{condition.operator}'",
                operation="create_rule",
            )
        if condition.operator in MEMBERSHIP_OPERATORS and not isinstance(
            condition.value, (list, tuple, set)
        ):
            raise ValidationError(
                f"{where}: '{condition.operator}' needs a list value",
                operation="create_rule",
            )
        if condition.operator in NUMERIC_OPERATORS and _as_number(condition.value) is None:
            raise ValidationError(
                f"{where}: '{condition.operator}' needs a numeric value",
                operation="create_rule",
            )
        if condition.operator in STRING_OPERATORS and not isinstance(condition.value, str):
            raise ValidationError(
                f"{where}: '{condition.operator}' needs a text value",
                operation="create_rule",
            )
