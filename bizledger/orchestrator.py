"""
Main Orchestrator for BizLedger

Ties the services and the reconciliation pipeline together into the
operations the dashboard calls:

1. Refresh (fetch both sources -> reconcile -> grouped view)
2. Manual entry and edit (validate -> normalize category -> insert/update)
3. Receipt upload (validate file -> extract -> validate -> normalize)
4. Delete (routed by record origin)
5. Business context (build and cache AI-context text)

DESIGN DECISION: The orchestrator enforces the failure boundaries:
- One failing source never blanks the view; it contributes no records
  and the user sees a warning
- User-facing messages are next steps; raw errors go to the log
- Every step is audited
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional, Union

import structlog
from pydantic import ValidationError

from bizledger.audit import AuditLogger, create_correlation_id
from bizledger.config import ReconciliationSettings, get_settings
from bizledger.context import BusinessContextBuilder
from bizledger.models.expense import (
    CategorySummary,
    ExternalExpense,
    GroupedExpenseView,
    KnowledgeEntry,
    ManualExpenseEntry,
    ReceiptOutcome,
    RelationalExpense,
    SourceOrigin,
    ValidationResult,
    ViewMode,
)
from bizledger.reconciliation import (
    CategoryNormalizer,
    CategoryRegistry,
    ReconciliationPipeline,
    RecordShapeUnifier,
    pack_description,
    summarize_by_category,
)
from bizledger.services.external import (
    ExpenseServiceClient,
    ReceiptRejectedError,
    ServiceUnavailableError,
)
from bizledger.services.storage import (
    ConfigStoreInterface,
    ExpenseStoreInterface,
    InMemoryConfigStore,
    JsonFileConfigStore,
    JsonlAuditStorage,
    NotFoundError,
    StorageError,
    SupabaseExpenseStore,
)
from bizledger.validation import ExpenseValidator


logger = structlog.get_logger(__name__)

EXTERNAL_SOURCE = "expense_service"
RELATIONAL_SOURCE = "expense_database"

SOURCE_WARNINGS = {
    EXTERNAL_SOURCE: (
        "We couldn't load your scanned receipts right now. "
        "Showing your other expenses; try refreshing in a minute."
    ),
    RELATIONAL_SOURCE: (
        "We couldn't load your manually entered expenses right now. "
        "Showing your other expenses; try refreshing in a minute."
    ),
}


class ExpenseDashboardFlow:
    """
    Orchestrates every dashboard operation for any number of users.

    Per-user state (category registry, normalizer, pipeline) is created
    lazily on first use and kept for the session.
    """

    def __init__(
        self,
        expense_service: Optional[ExpenseServiceClient] = None,
        expense_store: Optional[ExpenseStoreInterface] = None,
        config_store: Optional[ConfigStoreInterface] = None,
        validator: Optional[ExpenseValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[ReconciliationSettings] = None,
        default_categories: Optional[list[str]] = None,
    ):
        self._expense_service = expense_service
        self._expense_store = expense_store
        self._config_store = config_store or InMemoryConfigStore()
        self._validator = validator or ExpenseValidator()
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().reconciliation
        self._default_categories = default_categories

        self._unifier = RecordShapeUnifier(self._settings)
        self._context_builder = BusinessContextBuilder(self._config_store)
        self._pipelines: dict[str, ReconciliationPipeline] = {}

    # ------------------------------------------------------------------
    # Per-user state
    # ------------------------------------------------------------------

    def pipeline_for(self, user_id: str) -> ReconciliationPipeline:
        pipeline = self._pipelines.get(user_id)
        if pipeline is None:
            registry = CategoryRegistry(
                user_id,
                self._config_store,
                defaults=self._default_categories,
            )
            normalizer = CategoryNormalizer(registry, audit_logger=self._audit_logger)
            pipeline = ReconciliationPipeline(
                normalizer,
                settings=self._settings,
                audit_logger=self._audit_logger,
            )
            self._pipelines[user_id] = pipeline
        return pipeline

    def normalizer_for(self, user_id: str) -> CategoryNormalizer:
        return self.pipeline_for(user_id).normalizer

    def _today(self, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        return now.astimezone(self._settings.tzinfo).date()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def _fetch_external(self, user_id: str, correlation_id) -> tuple[list[dict], Optional[str]]:
        if self._expense_service is None:
            return [], None
        try:
            return await self._expense_service.fetch_expenses(user_id), None
        except ServiceUnavailableError as e:
            return [], await self._source_failed(user_id, EXTERNAL_SOURCE, e, correlation_id)

    async def _fetch_relational(self, user_id: str, correlation_id) -> tuple[list[dict], Optional[str]]:
        if self._expense_store is None:
            return [], None
        try:
            return await self._expense_store.list_expenses(user_id), None
        except StorageError as e:
            return [], await self._source_failed(user_id, RELATIONAL_SOURCE, e, correlation_id)

    async def _source_failed(self, user_id: str, source: str, error: Exception, correlation_id) -> str:
        logger.warning("expense_source_failed", user_id=user_id, source=source, error=str(error))
        if self._audit_logger:
            await self._audit_logger.log_source_fetch_failed(
                user_id=user_id,
                source=source,
                error_message=str(error),
                correlation_id=correlation_id,
            )
        return SOURCE_WARNINGS[source]

    async def refresh(
        self,
        user_id: str,
        view_mode: ViewMode = ViewMode.ALL,
        selected_date=None,
        expanded_keys=(),
        now: Optional[datetime] = None,
    ) -> GroupedExpenseView:
        """
        Fetch both sources and reconcile them into the grouped view.

        A source that fails contributes zero records; its warning is
        carried on the view.
        """
        correlation_id = create_correlation_id()

        (external, external_warning), (relational, relational_warning) = await asyncio.gather(
            self._fetch_external(user_id, correlation_id),
            self._fetch_relational(user_id, correlation_id),
        )
        warnings = [w for w in (external_warning, relational_warning) if w]

        return await self.pipeline_for(user_id).reconcile(
            external,
            relational,
            now=now,
            view_mode=view_mode,
            selected_date=selected_date,
            expanded_keys=expanded_keys,
            warnings=warnings,
            correlation_id=correlation_id,
        )

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def normalize_category(self, user_id: str, raw: Optional[str]) -> str:
        """Guaranteed-canonical normalization, for brand-new manual entries."""
        return await self.normalizer_for(user_id).normalize(raw, strict=True)

    async def list_categories(self, user_id: str) -> list[str]:
        return await self.normalizer_for(user_id).registry.load()

    async def category_summaries(
        self,
        user_id: str,
        view: GroupedExpenseView,
        month=None,
    ) -> list[CategorySummary]:
        """Spend per category for the records in a view (categories tab)."""
        names = await self.list_categories(user_id)
        return summarize_by_category(view.records, names, month=month)

    # ------------------------------------------------------------------
    # Manual entry
    # ------------------------------------------------------------------

    async def add_manual_expense(
        self,
        user_id: str,
        entry: ManualExpenseEntry,
        now: Optional[datetime] = None,
    ) -> tuple[Optional[Union[RelationalExpense, ExternalExpense]], ValidationResult, str]:
        """
        Validate and save a user-typed expense.

        Returns:
            (saved_record, validation_result, message_for_user)
            saved_record is None when nothing was saved.
        """
        correlation_id = create_correlation_id()
        result = self._validator.validate_manual_entry(entry)

        if not result.is_valid:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    user_id=user_id,
                    subject=result.subject,
                    issues=[
                        {"field": i.field, "type": i.issue_type, "message": i.message}
                        for i in result.issues
                    ],
                    correlation_id=correlation_id,
                )
            return None, result, self._validator.get_user_friendly_summary(result)

        if self._expense_store is None:
            return None, result, "Saving expenses isn't available right now. Please try again later."

        now = now or datetime.now(timezone.utc)
        category = await self.normalize_category(user_id, entry.category)
        expense_date = entry.expense_date or self._today(now)

        row = {
            "amount": str(entry.amount),
            "description": pack_description(entry.title, entry.description),
            "category": category,
            "expense_date": expense_date.isoformat(),
        }
        if entry.receipt_url:
            row["receipt_url"] = entry.receipt_url

        try:
            stored = await self._expense_store.insert_expense(user_id, row)
        except StorageError as e:
            logger.error("manual_expense_save_failed", user_id=user_id, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="expense_save_failed",
                    error_message=str(e),
                    details={"user_id": user_id},
                    correlation_id=correlation_id,
                )
            return None, result, "We couldn't save your expense. Please try again in a moment."

        record = self._unifier.unify_relational(stored, now)
        if record is not None:
            record = record.model_copy(update={"category": category})
            if self._audit_logger:
                await self._audit_logger.log_expense_saved(
                    user_id=user_id,
                    expense_id=record.key,
                    amount=str(record.amount),
                    category=category,
                    correlation_id=correlation_id,
                )

        message = "✅ Expense saved."
        if result.warnings:
            message += "\n" + self._validator.get_user_friendly_summary(result)
        return record, result, message

    async def update_expense(
        self,
        user_id: str,
        record: Union[RelationalExpense, ExternalExpense],
        entry: ManualExpenseEntry,
        now: Optional[datetime] = None,
    ) -> tuple[Optional[Union[RelationalExpense, ExternalExpense]], ValidationResult, str]:
        """
        Edit a saved expense with the same checks as manual entry.

        Only relational records can be edited; scanned receipts live in
        the external service, which offers no update call.

        Returns:
            (updated_record, validation_result, message_for_user)
            updated_record is None when nothing was changed.
        """
        correlation_id = create_correlation_id()
        result = self._validator.validate_manual_entry(entry)

        if record.origin is not SourceOrigin.RELATIONAL:
            return None, result, (
                "Scanned receipts can't be edited. Delete this one and add "
                "the expense with manual entry instead."
            )

        if not result.is_valid:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    user_id=user_id,
                    subject=result.subject,
                    issues=[
                        {"field": i.field, "type": i.issue_type, "message": i.message}
                        for i in result.issues
                    ],
                    correlation_id=correlation_id,
                )
            return None, result, self._validator.get_user_friendly_summary(result)

        if self._expense_store is None:
            return None, result, "Editing expenses isn't available right now. Please try again later."

        now = now or datetime.now(timezone.utc)
        category = await self.normalize_category(user_id, entry.category)
        expense_date = entry.expense_date or record.expense_date or record.effective_date

        row = {
            "amount": str(entry.amount),
            "description": pack_description(entry.title, entry.description),
            "category": category,
            "expense_date": expense_date.isoformat(),
        }
        if entry.receipt_url:
            row["receipt_url"] = entry.receipt_url

        try:
            stored = await self._expense_store.update_expense(user_id, record.id, row)
        except NotFoundError:
            return None, result, "This expense no longer exists. Refresh to update the list."
        except StorageError as e:
            logger.error("expense_update_failed", user_id=user_id,
                         expense_id=record.key, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="expense_update_failed",
                    error_message=str(e),
                    details={"user_id": user_id, "expense_id": record.key},
                    correlation_id=correlation_id,
                )
            return None, result, "We couldn't update your expense. Please try again in a moment."

        updated = self._unifier.unify_relational(stored, now)
        if updated is not None:
            updated = updated.model_copy(update={"category": category})
        if self._audit_logger:
            await self._audit_logger.log_expense_updated(
                user_id=user_id,
                expense_id=record.key,
                amount=str(entry.amount),
                category=category,
                correlation_id=correlation_id,
            )

        message = "✅ Expense updated."
        if result.warnings:
            message += "\n" + self._validator.get_user_friendly_summary(result)
        return updated, result, message

    # ------------------------------------------------------------------
    # Receipt upload
    # ------------------------------------------------------------------

    async def process_receipt(
        self,
        user_id: str,
        image_bytes: bytes,
        filename: str,
        mime_type: str = "image/jpeg",
    ) -> ReceiptOutcome:
        """
        Send a receipt photo for extraction and check the result.

        The external service keeps its own copy of accepted receipts, so
        they appear on the next refresh.
        """
        correlation_id = create_correlation_id()

        if self._audit_logger:
            await self._audit_logger.log_receipt_uploaded(
                user_id=user_id,
                filename=filename,
                file_size=len(image_bytes),
                correlation_id=correlation_id,
            )

        upload_check = self._validator.validate_upload(filename, len(image_bytes), mime_type)
        if not upload_check.is_valid:
            return ReceiptOutcome(
                accepted=False,
                message=self._validator.get_user_friendly_summary(upload_check),
            )

        if self._expense_service is None:
            return ReceiptOutcome(
                accepted=False,
                message="Receipt scanning isn't available right now. Add this expense with manual entry.",
            )

        try:
            extraction = await self._expense_service.upload_receipt(
                image_bytes, filename, mime_type, user_id=user_id,
            )
        except ReceiptRejectedError as e:
            if self._audit_logger:
                await self._audit_logger.log_receipt_rejected(
                    user_id=user_id,
                    missing_fields=[],
                    reason=str(e),
                    correlation_id=correlation_id,
                )
            return ReceiptOutcome(
                accepted=False,
                message="We couldn't find an expense on this receipt. Try a clearer photo, or use manual entry.",
            )
        except ServiceUnavailableError as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service=EXTERNAL_SOURCE,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return ReceiptOutcome(
                accepted=False,
                message="Receipt scanning is unavailable right now. Try again later, or use manual entry.",
            )

        result = self._validator.validate_extraction(extraction)
        if not result.is_valid:
            if self._audit_logger:
                await self._audit_logger.log_receipt_rejected(
                    user_id=user_id,
                    missing_fields=extraction.missing_fields,
                    reason="; ".join(i.message for i in result.issues if i.severity == "error"),
                    correlation_id=correlation_id,
                )
            return ReceiptOutcome(
                accepted=False,
                message=self._validator.get_user_friendly_summary(result),
                extraction=extraction,
                warnings=result.warnings,
            )

        category = await self.normalizer_for(user_id).normalize(extraction.category)

        if self._audit_logger:
            await self._audit_logger.log_receipt_accepted(
                user_id=user_id,
                category=category,
                amount=str(extraction.amount),
                confidence=extraction.confidence.value,
                correlation_id=correlation_id,
            )

        message = f"✅ Receipt added: ${extraction.amount:,.2f} in {category}."
        if result.warnings:
            message += "\n" + self._validator.get_user_friendly_summary(result)

        return ReceiptOutcome(
            accepted=True,
            message=message,
            extraction=extraction,
            category=category,
            warnings=result.warnings,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_expense(
        self,
        user_id: str,
        record: Union[RelationalExpense, ExternalExpense],
    ) -> tuple[bool, str]:
        """
        Delete one record through the path its origin requires.

        Relational deletes report failures to the user. External deletes
        are best-effort: a failure is logged and audited only.

        Returns:
            (deleted, message_for_user)
        """
        if record.origin is SourceOrigin.RELATIONAL:
            if self._expense_store is None:
                return False, "Deleting expenses isn't available right now. Please try again later."
            try:
                await self._expense_store.delete_expense(user_id, record.id)
            except NotFoundError:
                return False, "This expense was already deleted. Refresh to update the list."
            except StorageError as e:
                logger.error("expense_delete_failed", user_id=user_id,
                             expense_id=record.key, error=str(e))
                if self._audit_logger:
                    await self._audit_logger.log_expense_delete_failed(
                        user_id=user_id,
                        expense_id=record.key,
                        source=RELATIONAL_SOURCE,
                        error_message=str(e),
                    )
                return False, "We couldn't delete this expense. Please try again in a moment."

            if self._audit_logger:
                await self._audit_logger.log_expense_deleted(
                    user_id=user_id, expense_id=record.key, source=RELATIONAL_SOURCE,
                )
            return True, "Expense deleted."

        deleted = False
        if self._expense_service is not None:
            deleted = await self._expense_service.delete_expense(record.key)

        if self._audit_logger:
            if deleted:
                await self._audit_logger.log_expense_deleted(
                    user_id=user_id, expense_id=record.key, source=EXTERNAL_SOURCE,
                )
            else:
                await self._audit_logger.log_expense_delete_failed(
                    user_id=user_id, expense_id=record.key, source=EXTERNAL_SOURCE,
                )

        if deleted:
            return True, "Expense deleted."
        return False, (
            "We couldn't remove this scanned receipt right now. "
            "It may reappear after a refresh; try deleting it again later."
        )

    # ------------------------------------------------------------------
    # Business context
    # ------------------------------------------------------------------

    async def update_business_context(
        self,
        user_id: str,
        entries: list[KnowledgeEntry],
        summaries: Optional[list[CategorySummary]] = None,
    ) -> str:
        """Rebuild and cache the AI-context text for a user."""
        text = await self._context_builder.refresh(user_id, entries, summaries)
        if self._audit_logger:
            await self._audit_logger.log_business_context_updated(
                user_id=user_id,
                entry_count=len(entries),
                context_length=len(text),
            )
        return text

    async def get_business_context(self, user_id: str) -> Optional[str]:
        return await self._context_builder.get(user_id)


def create_app_components() -> ExpenseDashboardFlow:
    """
    Factory function to create all application components.

    Services whose settings are missing are left out; the flow then
    treats that source as contributing no records.
    """
    settings = get_settings()
    app_settings = settings.app

    expense_service = None
    try:
        expense_service = ExpenseServiceClient(settings.expense_service)
    except ValidationError as e:
        logger.warning("expense_service_not_configured", error=str(e))

    expense_store = None
    try:
        expense_store = SupabaseExpenseStore(settings.supabase)
    except ValidationError as e:
        logger.warning("expense_database_not_configured", error=str(e))

    if app_settings.config_store_path:
        config_store = JsonFileConfigStore(app_settings.config_store_path)
    else:
        config_store = InMemoryConfigStore()

    audit_storage = None
    if app_settings.audit_log_path:
        audit_storage = JsonlAuditStorage(app_settings.audit_log_path)

    return ExpenseDashboardFlow(
        expense_service=expense_service,
        expense_store=expense_store,
        config_store=config_store,
        validator=ExpenseValidator(app_settings),
        audit_logger=AuditLogger(audit_storage),
        settings=settings.reconciliation,
        default_categories=app_settings.default_categories_list,
    )
