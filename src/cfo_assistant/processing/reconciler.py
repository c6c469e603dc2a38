"""Bank reconciliation: sync, candidate matching and reconciliation."""

import dataclasses
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional, Union

from cfo_assistant.config import ReconciliationConfig
from cfo_assistant.exceptions import AlreadyReconciledError, NotFoundError, ValidationError
from cfo_assistant.models.batch import BatchResult
from cfo_assistant.models.documents import (
    STATUS_AUTHORISED,
    TYPE_RECEIVABLE,
    BankTransaction,
    Invoice,
)
from cfo_assistant.models.reconciliation import (
    DocumentType,
    MatchCandidate,
    PotentialMatches,
    ReconciliationStats,
    SyncResult,
)
from cfo_assistant.models.transaction import TransactionKind, TransactionRecord, TransactionStatus
from cfo_assistant.sources.base import AccountingProvider, DocumentFilter
from cfo_assistant.storage.base import TransactionFilter, TransactionStore
from cfo_assistant.utils.logging_config import LogContext, get_logger

logger = get_logger(__name__)

MAX_CONFIDENCE = 100
AMOUNT_MATCH_POINTS = 50
CONTACT_MATCH_POINTS = 20
REFERENCE_MATCH_POINTS = 15
NUMBER_MATCH_POINTS = 15
DATE_PROXIMITY_POINTS = 10

SYNC_PAGE_SIZE = 100


def calculate_match_confidence(
    record: TransactionRecord,
    document: Invoice,
    config: Optional[ReconciliationConfig] = None,
) -> int:
    """Score how likely a document settles a bank transaction.

    Points are additive and capped at 100:

    * 50 when the amounts agree within the tolerance
    * 20 when contact names are equal (case-insensitive)
    * 15 when the transaction reference contains the document reference
    * 15 when the description contains the document number
    * ``10 - days`` when the dates are at most 7 days apart

    Args:
        record: Bank transaction.
        document: Candidate invoice or bill.
        config: Reconciliation settings (defaults if None).

    Returns:
        Confidence from 0 to 100.
    """
    config = config or ReconciliationConfig()
    score = 0

    if abs(abs(record.amount) - document.outstanding) < config.amount_tolerance:
        score += AMOUNT_MATCH_POINTS

    if (
        record.contact_name
        and document.contact_name
        and record.contact_name.lower() == document.contact_name.lower()
    ):
        score += CONTACT_MATCH_POINTS

    if record.reference and document.reference and document.reference in record.reference:
        score += REFERENCE_MATCH_POINTS

    if (
        record.description
        and document.invoice_number
        and document.invoice_number in record.description
    ):
        score += NUMBER_MATCH_POINTS

    if document.invoice_date is not None:
        days_apart = abs((record.date - document.invoice_date).days)
        if days_apart <= config.date_proximity_days:
            score += max(DATE_PROXIMITY_POINTS - days_apart, 0)

    return max(0, min(score, MAX_CONFIDENCE))


def rank_candidates(
    record: TransactionRecord,
    documents: Iterable[Invoice],
    document_type: DocumentType,
    config: Optional[ReconciliationConfig] = None,
) -> list[MatchCandidate]:
    """Score documents against a transaction, highest confidence first."""
    candidates = [
        MatchCandidate(
            document_id=doc.invoice_id,
            document_type=document_type,
            confidence=calculate_match_confidence(record, doc, config),
            number=doc.invoice_number,
            reference=doc.reference,
            contact_name=doc.contact_name,
            document_date=doc.invoice_date,
            due_date=doc.due_date,
            amount=doc.total,
            amount_due=doc.amount_due,
        )
        for doc in documents
    ]
    # Stable sort keeps provider order among equal scores
    candidates.sort(key=lambda c: c.confidence, reverse=True)
    return candidates


def _document_type(value: Union[DocumentType, str]) -> DocumentType:
    if isinstance(value, DocumentType):
        return value
    try:
        return DocumentType(str(value).upper())
    except ValueError as e:
        raise ValidationError(
            f"Unknown document type '{value}', expected INVOICE or BILL",
            operation="reconcile_transaction",
        ) from e


class Reconciler:
    """Links cached bank transactions to the invoices and bills they settle."""

    def __init__(
        self,
        provider: AccountingProvider,
        transactions: TransactionStore,
        config: Optional[ReconciliationConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize reconciler.

        Args:
            provider: Source of bank transactions, invoices and bills.
            transactions: Local transaction store.
            config: Reconciliation settings (defaults if None).
            clock: Returns the current time; injectable for tests.
        """
        self.provider = provider
        self.transactions = transactions
        self.config = config or ReconciliationConfig()
        self.clock = clock

    def _get_transaction(
        self, user_id: str, tenant_id: str, transaction_id: str, operation: str
    ) -> TransactionRecord:
        record = self.transactions.find_one(TransactionFilter(
            user_id=user_id, tenant_id=tenant_id, transaction_id=transaction_id,
        ))
        if record is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                entity_id=transaction_id,
                operation=operation,
            )
        return record

    def sync_bank_transactions(
        self, user_id: str, tenant_id: str, days: Optional[int] = None
    ) -> SyncResult:
        """Pull recent provider bank transactions into the local store.

        Records are upserted by (user, tenant, external id, BANK). Cancelled
        provider transactions become VOIDED. A reconciliation made locally
        is never undone by a sync.

        Args:
            user_id: Owning user.
            tenant_id: Provider organization.
            days: Days back from today (config default if None).

        Returns:
            Created/updated/skipped counts.
        """
        days = days if days is not None else self.config.sync_days
        now = self.clock()
        to_date = now.date()
        from_date = to_date - timedelta(days=days)
        result = SyncResult(from_date=from_date, to_date=to_date)

        with LogContext(logger, "sync_bank_transactions", user_id=user_id, tenant_id=tenant_id):
            for bank_tx in self._fetch_all_bank_transactions(tenant_id, from_date, to_date):
                tx_date = bank_tx.transaction_date
                if tx_date is None:
                    logger.warning(
                        f"Skipping bank transaction {bank_tx.bank_transaction_id}: no date"
                    )
                    result.skipped += 1
                    continue

                existing = self.transactions.find_one(TransactionFilter(
                    user_id=user_id,
                    tenant_id=tenant_id,
                    external_id=bank_tx.bank_transaction_id,
                    kind=TransactionKind.BANK,
                ))
                if existing is None:
                    record = self._new_record(user_id, tenant_id, bank_tx, tx_date, now)
                    self.transactions.create(record)
                    result.created += 1
                else:
                    patch = self._sync_patch(existing, bank_tx, tx_date, now)
                    self.transactions.update(existing, patch)
                    result.updated += 1

        logger.info(
            f"Synced bank transactions for tenant {tenant_id}: "
            f"{result.created} new, {result.updated} updated, {result.skipped} skipped"
        )
        return result

    def _fetch_all_bank_transactions(
        self, tenant_id: str, from_date: date, to_date: date
    ) -> list[BankTransaction]:
        fetched: list[BankTransaction] = []
        page = 1
        while True:
            batch = self.provider.fetch_bank_transactions(tenant_id, DocumentFilter(
                date_from=from_date, date_to=to_date, page=page, page_size=SYNC_PAGE_SIZE,
            ))
            fetched.extend(batch)
            if len(batch) < SYNC_PAGE_SIZE:
                return fetched
            page += 1

    @staticmethod
    def _new_record(
        user_id: str, tenant_id: str, bank_tx: BankTransaction, tx_date: date, now: datetime
    ) -> TransactionRecord:
        if bank_tx.is_cancelled:
            status = TransactionStatus.VOIDED
        elif bank_tx.is_reconciled:
            status = TransactionStatus.RECONCILED
        else:
            status = TransactionStatus.PENDING
        reconciled = bank_tx.is_reconciled and not bank_tx.is_cancelled
        return TransactionRecord(
            user_id=user_id,
            tenant_id=tenant_id,
            kind=TransactionKind.BANK,
            date=tx_date,
            amount=bank_tx.signed_amount,
            external_id=bank_tx.bank_transaction_id,
            description=bank_tx.description,
            reference=bank_tx.reference,
            contact_id=bank_tx.contact.contact_id,
            contact_name=bank_tx.contact.name,
            account_id=bank_tx.bank_account.account_id,
            account_code=bank_tx.bank_account.code,
            account_name=bank_tx.bank_account.name,
            status=status,
            is_reconciled=reconciled,
            reconciliation_date=now if reconciled else None,
            metadata={"providerData": bank_tx.raw},
            last_synced_at=now,
        )

    @staticmethod
    def _sync_patch(
        existing: TransactionRecord, bank_tx: BankTransaction, tx_date: date, now: datetime
    ) -> dict[str, object]:
        status = existing.status
        is_reconciled = existing.is_reconciled
        reconciliation_date = existing.reconciliation_date

        if existing.is_reconciled:
            if bank_tx.is_cancelled:
                logger.warning(
                    f"Provider cancelled reconciled transaction {existing.id}; "
                    "keeping local reconciliation"
                )
        elif bank_tx.is_cancelled:
            status = TransactionStatus.VOIDED
        elif bank_tx.is_reconciled:
            status = TransactionStatus.RECONCILED
            is_reconciled = True
            reconciliation_date = now

        metadata = dict(existing.metadata)
        metadata["providerData"] = bank_tx.raw
        return {
            "date": tx_date,
            "amount": bank_tx.signed_amount,
            "description": bank_tx.description,
            "reference": bank_tx.reference,
            "contact_id": bank_tx.contact.contact_id,
            "contact_name": bank_tx.contact.name,
            "account_id": bank_tx.bank_account.account_id,
            "account_code": bank_tx.bank_account.code,
            "account_name": bank_tx.bank_account.name,
            "status": status,
            "is_reconciled": is_reconciled,
            "reconciliation_date": reconciliation_date,
            "metadata": metadata,
            "last_synced_at": now,
        }

    def find_potential_matches(
        self, user_id: str, tenant_id: str, transaction_id: str
    ) -> PotentialMatches:
        """Rank outstanding documents that could settle a transaction.

        Outflows (negative amounts) are matched against bills, everything
        else against invoices. Already reconciled transactions get no
        candidates.

        Raises:
            NotFoundError: If the transaction does not exist.
            UpstreamError: If the provider fetch fails.
        """
        with LogContext(logger, "find_potential_matches", transaction_id=transaction_id):
            record = self._get_transaction(
                user_id, tenant_id, transaction_id, "find_potential_matches"
            )
            matches = PotentialMatches(transaction=record)
            if record.is_reconciled:
                logger.debug(f"Transaction {transaction_id} already reconciled, no matches")
                return matches

            amount = abs(record.amount)
            doc_filter = DocumentFilter(
                statuses=(STATUS_AUTHORISED,),
                amount_due_min=amount - self.config.amount_tolerance,
                amount_due_max=amount + self.config.amount_tolerance,
                page_size=self.config.candidate_page_size,
            )

            if record.amount < 0:
                bills = self.provider.fetch_bills(tenant_id, doc_filter)
                matches.bills = rank_candidates(record, bills, DocumentType.BILL, self.config)
            else:
                invoices = self.provider.fetch_invoices(
                    tenant_id, dataclasses.replace(doc_filter, invoice_type=TYPE_RECEIVABLE)
                )
                matches.invoices = rank_candidates(
                    record, invoices, DocumentType.INVOICE, self.config
                )

        logger.debug(
            f"Found {len(matches.invoices)} invoice and {len(matches.bills)} bill "
            f"candidates for transaction {transaction_id}"
        )
        return matches

    def reconcile_transaction(
        self,
        user_id: str,
        tenant_id: str,
        transaction_id: str,
        document_id: str,
        document_type: Union[DocumentType, str],
    ) -> TransactionRecord:
        """Mark a transaction as settled by a document.

        Raises:
            ValidationError: If the document type is unknown.
            NotFoundError: If the transaction does not exist.
            AlreadyReconciledError: If the transaction is already reconciled.
        """
        with LogContext(
            logger, "reconcile_transaction",
            transaction_id=transaction_id, document_id=document_id,
        ):
            doc_type = _document_type(document_type)
            record = self._get_transaction(
                user_id, tenant_id, transaction_id, "reconcile_transaction"
            )
            if record.is_reconciled:
                raise AlreadyReconciledError(
                    f"Transaction {transaction_id} is already reconciled",
                    entity_id=transaction_id,
                    operation="reconcile_transaction",
                )

            now = self.clock()
            metadata = dict(record.metadata)
            metadata["reconciliation"] = {
                "documentId": document_id,
                "documentType": doc_type.value,
                "reconciliationDate": now.isoformat(),
            }
            self.transactions.update(record, {
                "status": TransactionStatus.RECONCILED,
                "is_reconciled": True,
                "reconciliation_date": now,
                "metadata": metadata,
            })

        logger.info(f"Reconciled transaction {transaction_id} with {doc_type.value} {document_id}")
        return record

    def reconcile_transactions(
        self,
        user_id: str,
        tenant_id: str,
        pairs: Iterable[tuple[str, str, Union[DocumentType, str]]],
    ) -> BatchResult:
        """Reconcile several (transaction id, document id, type) triples.

        Each item is independent; failures are tallied, not raised.
        """
        result = BatchResult()
        for transaction_id, document_id, document_type in pairs:
            try:
                self.reconcile_transaction(
                    user_id, tenant_id, transaction_id, document_id, document_type
                )
                result.record_success()
            except Exception as e:
                logger.exception(f"Failed to reconcile transaction {transaction_id}")
                result.record_failure(transaction_id, getattr(e, "kind", type(e).__name__), str(e))

        logger.info(f"Reconciled {result.succeeded}/{result.total} transactions")
        return result

    def get_stats(
        self, user_id: str, tenant_id: str, days: Optional[int] = None
    ) -> ReconciliationStats:
        """Count reconciled bank transactions over the last ``days`` days."""
        days = days if days is not None else self.config.sync_days
        to_date = self.clock().date()
        from_date = to_date - timedelta(days=days)

        records = self.transactions.find_all(TransactionFilter(
            user_id=user_id,
            tenant_id=tenant_id,
            kind=TransactionKind.BANK,
            date_from=from_date,
            date_to=to_date,
        ))
        return ReconciliationStats(
            total=len(records),
            reconciled=sum(1 for r in records if r.is_reconciled),
            from_date=from_date,
            to_date=to_date,
        )
