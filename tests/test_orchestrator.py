"""
Integration tests for the dashboard flow.

The external service is replaced by an in-process fake; the relational
store is the in-memory double from conftest. Tests of malformed service
responses use the real clients over httpx.MockTransport.
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import UUID

import httpx
import pytest

from bizledger.audit import AuditLogger
from bizledger.config import (
    ExpenseServiceSettings,
    SupabaseSettings,
    get_settings,
    validate_all_settings,
)
from bizledger.models.audit import AuditEventType
from bizledger.models.expense import (
    KnowledgeEntry,
    ManualExpenseEntry,
    ReceiptExtraction,
    RelationalExpense,
    ViewMode,
)
from bizledger.orchestrator import ExpenseDashboardFlow, create_app_components
from bizledger.services.external import (
    ExpenseServiceClient,
    ReceiptRejectedError,
    ServiceUnavailableError,
)
from bizledger.services.storage import (
    InMemoryConfigStore,
    JsonFileConfigStore,
    JsonlAuditStorage,
    SupabaseExpenseStore,
)
from bizledger.validation import ExpenseValidator


class FakeExpenseService:
    """Stands in for ExpenseServiceClient."""

    def __init__(self, records=None):
        self.records = list(records or [])
        self.fetch_error = None
        self.upload_result = None
        self.upload_error = None
        self.delete_ok = True
        self.deleted = []
        self.uploads = 0

    async def fetch_expenses(self, user_id):
        if self.fetch_error:
            raise self.fetch_error
        return [dict(r) for r in self.records]

    async def upload_receipt(self, image_bytes, filename, mime_type="image/jpeg", user_id=None):
        self.uploads += 1
        if self.upload_error:
            raise self.upload_error
        return self.upload_result

    async def delete_expense(self, expense_id):
        self.deleted.append(expense_id)
        return self.delete_ok


@pytest.fixture
def service():
    return FakeExpenseService([
        {"id": "rcpt_1", "amount": "18.40", "description": "Team lunch",
         "category": "restaurant", "created_at": "2024-06-15T12:00:00Z"},
    ])


@pytest.fixture
def audit_storage(tmp_path):
    return JsonlAuditStorage(tmp_path / "audit.jsonl")


@pytest.fixture
def flow(service, expense_store, utc_settings, app_settings, audit_storage):
    return ExpenseDashboardFlow(
        expense_service=service,
        expense_store=expense_store,
        config_store=InMemoryConfigStore(),
        validator=ExpenseValidator(app_settings),
        audit_logger=AuditLogger(audit_storage),
        settings=utc_settings,
    )


def event_types(storage):
    return [e.event_type for e in asyncio.run(storage.get_recent_events())]


def mock_client(handler, base_url):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


class TestRefresh:
    """Tests for refresh."""

    def test_both_sources_merged(self, flow, expense_store, now):
        """Test a normal refresh."""
        asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="Taxi", amount=Decimal("12"), category="taxi"), now=now,
        ))
        view = asyncio.run(flow.refresh("u1", now=now))

        assert view.count == 2
        assert {r.category for r in view.records} == {"Meals", "Travel"}
        assert view.warnings == []

    def test_external_failure_is_partial(self, flow, service, audit_storage, now):
        """Test that a failed service shows relational records with a warning."""
        asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="Taxi", amount=Decimal("12")), now=now,
        ))
        service.fetch_error = ServiceUnavailableError("down", status_code=503)

        view = asyncio.run(flow.refresh("u1", now=now))

        assert [r.title for r in view.records] == ["Taxi"]
        assert len(view.warnings) == 1
        assert "scanned receipts" in view.warnings[0]
        assert AuditEventType.SOURCE_FETCH_FAILED in event_types(audit_storage)

    def test_relational_failure_is_partial(self, flow, expense_store, now):
        """Test that a failed database shows external records with a warning."""
        expense_store.fail = True
        view = asyncio.run(flow.refresh("u1", now=now))

        assert [r.key for r in view.records] == ["rcpt_1"]
        assert "manually entered" in view.warnings[0]

    def test_both_sources_failing(self, flow, service, expense_store, now):
        """Test that a total outage is an empty view, not an exception."""
        service.fetch_error = ServiceUnavailableError("down")
        expense_store.fail = True
        view = asyncio.run(flow.refresh("u1", view_mode=ViewMode.TODAY, now=now))

        assert view.is_empty
        assert len(view.warnings) == 2

    def test_unconfigured_sources_contribute_nothing(self, utc_settings, app_settings, now):
        """Test a flow with no services wired."""
        flow = ExpenseDashboardFlow(validator=ExpenseValidator(app_settings), settings=utc_settings)
        view = asyncio.run(flow.refresh("u1", now=now))
        assert view.is_empty
        assert view.warnings == []

    def test_relational_non_json_body_is_partial(self, service, utc_settings, app_settings, now):
        """Test that a database answering 200 with an HTML page is a source failure."""
        store = SupabaseExpenseStore(
            settings=SupabaseSettings(url="https://db.test", api_key="secret"),
            client=mock_client(
                lambda request: httpx.Response(200, text="<html>gateway</html>"),
                "https://db.test",
            ),
        )
        flow = ExpenseDashboardFlow(
            expense_service=service,
            expense_store=store,
            validator=ExpenseValidator(app_settings),
            settings=utc_settings,
        )
        view = asyncio.run(flow.refresh("u1", now=now))

        assert view.count == 1
        assert [r.key for r in view.records] == ["rcpt_1"]
        assert "manually entered" in view.warnings[0]


class TestManualEntry:
    """Tests for add_manual_expense."""

    def test_saved_row_format(self, flow, expense_store, now):
        """Test the stored row and the returned record."""
        record, result, message = asyncio.run(flow.add_manual_expense(
            "u1",
            ManualExpenseEntry(title="Lunch", description="With Sam", amount=Decimal("22.5"), category="food"),
            now=now,
        ))

        row = expense_store.rows[0]
        assert row["description"] == "Lunch|With Sam"
        assert row["category"] == "Meals"
        assert row["amount"] == "22.5"
        assert row["expense_date"] == "2024-06-15"
        assert row["user_id"] == "u1"

        assert isinstance(record, RelationalExpense)
        assert record.id == UUID(row["id"])
        assert record.title == "Lunch"
        assert record.amount == Decimal("22.50")
        assert result.is_valid
        assert "saved" in message

    def test_default_date_uses_viewer_timezone(self, expense_store, ny_settings, app_settings, now):
        """Test that 'today' is the viewer's day."""
        flow = ExpenseDashboardFlow(
            expense_store=expense_store,
            validator=ExpenseValidator(app_settings),
            settings=ny_settings,
        )
        late = now.replace(hour=2)  # 22:00 on June 14 in New York
        asyncio.run(flow.add_manual_expense("u1", ManualExpenseEntry(title="Cab", amount=Decimal("9")), now=late))
        assert expense_store.rows[0]["expense_date"] == "2024-06-14"

    def test_invalid_entry_not_saved(self, flow, expense_store, audit_storage, now):
        """Test that validation errors stop the write."""
        record, result, message = asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="", amount=None), now=now,
        ))
        assert record is None
        assert not result.is_valid
        assert expense_store.rows == []
        assert "A title is required" in message
        assert AuditEventType.VALIDATION_FAILED in event_types(audit_storage)

    def test_store_failure_message(self, flow, expense_store, now):
        """Test an actionable message when the database is down."""
        expense_store.fail = True
        record, result, message = asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="Cab", amount=Decimal("9")), now=now,
        ))
        assert record is None
        assert result.is_valid
        assert "try again" in message

    def test_category_guaranteed_canonical(self, expense_store, utc_settings, app_settings,
                                           failing_config_store, now):
        """Test that a failed category save stores Other."""
        flow = ExpenseDashboardFlow(
            expense_store=expense_store,
            config_store=failing_config_store,
            validator=ExpenseValidator(app_settings),
            settings=utc_settings,
        )
        asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="Vet", amount=Decimal("80"), category="Pet Care"), now=now,
        ))
        assert expense_store.rows[0]["category"] == "Other"


class TestReceiptUpload:
    """Tests for process_receipt."""

    def test_accepted_receipt_learns_category(self, flow, service, audit_storage):
        """Test a successful extraction with an unseen category."""
        service.upload_result = ReceiptExtraction(amount=Decimal("60.00"), category="Pet Care")

        outcome = asyncio.run(flow.process_receipt("u1", b"img", "vet.jpg"))

        assert outcome.accepted
        assert outcome.category == "Pet Care"
        assert "Pet Care" in asyncio.run(flow.list_categories("u1"))
        types = event_types(audit_storage)
        assert AuditEventType.RECEIPT_ACCEPTED in types
        assert AuditEventType.CATEGORY_CREATED in types

    def test_missing_fields_rejected(self, flow, service, audit_storage):
        """Test that a partial extraction is not ingested."""
        service.upload_result = ReceiptExtraction(amount=Decimal("60.00"))

        outcome = asyncio.run(flow.process_receipt("u1", b"img", "vet.jpg"))

        assert not outcome.accepted
        assert "category" in outcome.message
        assert "manual entry" in outcome.message
        events = asyncio.run(audit_storage.get_recent_events())
        assert events[0].event_type == AuditEventType.RECEIPT_REJECTED
        assert events[0].details["missing_fields"] == ["category"]

    def test_service_rejection(self, flow, service):
        """Test a receipt the service could not read at all."""
        service.upload_error = ReceiptRejectedError("nothing found")
        outcome = asyncio.run(flow.process_receipt("u1", b"img", "r.jpg"))
        assert not outcome.accepted
        assert "clearer photo" in outcome.message

    def test_service_unavailable(self, flow, service, audit_storage):
        """Test an outage during upload."""
        service.upload_error = ServiceUnavailableError("timeout")
        outcome = asyncio.run(flow.process_receipt("u1", b"img", "r.jpg"))
        assert not outcome.accepted
        assert "unavailable" in outcome.message
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in event_types(audit_storage)

    def test_bad_file_never_sent(self, flow, service):
        """Test that upload validation runs before the service call."""
        outcome = asyncio.run(flow.process_receipt("u1", b"img", "notes.txt", "text/plain"))
        assert not outcome.accepted
        assert service.uploads == 0

    def test_non_string_fields_from_service(self, utc_settings, app_settings):
        """Test that a numeric vendor in the upload response is accepted."""
        client = ExpenseServiceClient(
            settings=ExpenseServiceSettings(base_url="https://expenses.test"),
            client=mock_client(
                lambda request: httpx.Response(
                    200, json={"amount": 12.5, "category": "Meals", "vendor": 123},
                ),
                "https://expenses.test",
            ),
            receipt_description_cap=200,
        )
        flow = ExpenseDashboardFlow(
            expense_service=client,
            validator=ExpenseValidator(app_settings),
            settings=utc_settings,
        )
        outcome = asyncio.run(flow.process_receipt("u1", b"img", "r.jpg"))

        assert outcome.accepted
        assert outcome.extraction.vendor == "123"
        assert outcome.category == "Meals"

    def test_unbuildable_response_is_rejection(self, utc_settings, app_settings):
        """Test that an upload response the model cannot hold is a defined failure."""
        client = ExpenseServiceClient(
            settings=ExpenseServiceSettings(base_url="https://expenses.test"),
            client=mock_client(
                lambda request: httpx.Response(
                    200, json={"amount": 4, "category": "Meals", "description": "d" * 400},
                ),
                "https://expenses.test",
            ),
            receipt_description_cap=400,
        )
        flow = ExpenseDashboardFlow(
            expense_service=client,
            validator=ExpenseValidator(app_settings),
            settings=utc_settings,
        )
        outcome = asyncio.run(flow.process_receipt("u1", b"img", "r.jpg"))

        assert not outcome.accepted
        assert "clearer photo" in outcome.message


class TestUpdate:
    """Tests for update_expense."""

    def test_relational_update(self, flow, expense_store, audit_storage, now):
        """Test editing a manual entry in the database."""
        record, _, _ = asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="Cab", amount=Decimal("9")), now=now,
        ))
        updated, result, message = asyncio.run(flow.update_expense(
            "u1",
            record,
            ManualExpenseEntry(title="Cab ride", description="Airport", amount=Decimal("11"), category="taxi"),
            now=now,
        ))

        row = expense_store.rows[0]
        assert row["id"] == str(record.id)
        assert row["description"] == "Cab ride|Airport"
        assert row["category"] == "Travel"
        assert row["amount"] == "11"
        assert row["expense_date"] == "2024-06-15"

        assert result.is_valid
        assert updated.id == record.id
        assert updated.title == "Cab ride"
        assert updated.amount == Decimal("11.00")
        assert updated.category == "Travel"
        assert "updated" in message
        assert AuditEventType.EXPENSE_UPDATED in event_types(audit_storage)

    def test_external_record_not_editable(self, flow, service, expense_store, now):
        """Test that scanned receipts get an actionable message instead of an edit."""
        view = asyncio.run(flow.refresh("u1", now=now))
        updated, _, message = asyncio.run(flow.update_expense(
            "u1", view.records[0], ManualExpenseEntry(title="Lunch", amount=Decimal("20")), now=now,
        ))

        assert updated is None
        assert "can't be edited" in message
        assert "manual entry" in message
        assert expense_store.rows == []
        assert service.deleted == []

    def test_invalid_edit_not_saved(self, flow, expense_store, now):
        """Test that validation runs before the write."""
        record, _, _ = asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="Cab", amount=Decimal("9")), now=now,
        ))
        updated, result, _ = asyncio.run(flow.update_expense(
            "u1", record, ManualExpenseEntry(title="", amount=None), now=now,
        ))

        assert updated is None
        assert not result.is_valid
        assert expense_store.rows[0]["amount"] == "9"

    def test_deleted_record(self, flow, now):
        """Test editing a record that no longer exists."""
        record, _, _ = asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="Cab", amount=Decimal("9")), now=now,
        ))
        asyncio.run(flow.delete_expense("u1", record))
        updated, _, message = asyncio.run(flow.update_expense(
            "u1", record, ManualExpenseEntry(title="Cab", amount=Decimal("10")), now=now,
        ))
        assert updated is None
        assert "no longer exists" in message

    def test_store_failure_message(self, flow, expense_store, now):
        """Test an actionable message when the database is down."""
        record, _, _ = asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="Cab", amount=Decimal("9")), now=now,
        ))
        expense_store.fail = True
        updated, result, message = asyncio.run(flow.update_expense(
            "u1", record, ManualExpenseEntry(title="Cab", amount=Decimal("10")), now=now,
        ))
        assert updated is None
        assert result.is_valid
        assert "try again" in message


class TestDelete:
    """Tests for delete_expense."""

    def test_relational_delete(self, flow, expense_store, now):
        """Test deleting a manual entry from the database."""
        record, _, _ = asyncio.run(flow.add_manual_expense(
            "u1", ManualExpenseEntry(title="Cab", amount=Decimal("9")), now=now,
        ))
        deleted, message = asyncio.run(flow.delete_expense("u1", record))
        assert deleted
        assert expense_store.rows == []

        deleted, message = asyncio.run(flow.delete_expense("u1", record))
        assert not deleted
        assert "already deleted" in message

    def test_external_delete_routed_to_service(self, flow, service, expense_store, now):
        """Test that external records go to the service by id."""
        view = asyncio.run(flow.refresh("u1", now=now))
        deleted, _ = asyncio.run(flow.delete_expense("u1", view.records[0]))
        assert deleted
        assert service.deleted == ["rcpt_1"]

    def test_external_delete_failure_tolerated(self, flow, service, audit_storage, now):
        """Test that a failed external delete is reported, not raised."""
        service.delete_ok = False
        view = asyncio.run(flow.refresh("u1", now=now))
        deleted, message = asyncio.run(flow.delete_expense("u1", view.records[0]))
        assert not deleted
        assert "reappear" in message
        assert AuditEventType.EXPENSE_DELETE_FAILED in event_types(audit_storage)


class TestCategoriesAndContext:
    """Tests for category helpers and the business context."""

    def test_normalize_category_strict(self, flow):
        """Test the guaranteed-canonical entry point."""
        assert asyncio.run(flow.normalize_category("u1", "dinner")) == "Meals"
        assert asyncio.run(flow.normalize_category("u1", "")) == "Other"

    def test_category_summaries(self, flow, now):
        """Test spend per category for a view."""
        view = asyncio.run(flow.refresh("u1", now=now))
        summaries = asyncio.run(flow.category_summaries("u1", view, month=date(2024, 6, 1)))
        meals = next(s for s in summaries if s.category == "Meals")
        assert meals.total == Decimal("18.40")
        assert summaries[-1].category == "Other"

    def test_business_context_round_trip(self, flow, audit_storage):
        """Test updating and reading the cached context."""
        entries = [KnowledgeEntry(title="Hours", content="Open weekdays")]
        text = asyncio.run(flow.update_business_context("u1", entries))
        assert asyncio.run(flow.get_business_context("u1")) == text
        assert AuditEventType.BUSINESS_CONTEXT_UPDATED in event_types(audit_storage)


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_missing_configuration_leaves_services_out(self, monkeypatch, tmp_path):
        """Test that absent settings do not stop the app from starting."""
        for name in ("EXPENSE_SERVICE_BASE_URL", "SUPABASE_URL", "SUPABASE_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("CONFIG_STORE_PATH", str(tmp_path / "config.json"))
        get_settings.cache_clear()

        flow = create_app_components()

        assert flow._expense_service is None
        assert flow._expense_store is None
        assert isinstance(flow._config_store, JsonFileConfigStore)

    def test_configured_services_wired(self, monkeypatch):
        """Test that configured services are created."""
        monkeypatch.setenv("EXPENSE_SERVICE_BASE_URL", "https://expenses.test")
        monkeypatch.setenv("SUPABASE_URL", "https://db.test")
        monkeypatch.setenv("SUPABASE_API_KEY", "secret")
        monkeypatch.delenv("CONFIG_STORE_PATH", raising=False)
        get_settings.cache_clear()

        flow = create_app_components()

        assert flow._expense_service is not None
        assert flow._expense_store is not None
        assert isinstance(flow._config_store, InMemoryConfigStore)

    def test_validate_all_settings_reports_missing(self, monkeypatch):
        """Test the startup check names the section that failed."""
        monkeypatch.delenv("EXPENSE_SERVICE_BASE_URL", raising=False)
        monkeypatch.setenv("RECONCILE_TIMEZONE", "Europe/Paris")
        get_settings.cache_clear()

        results = validate_all_settings()

        assert results["expense_service"] is False
        assert "expense_service_error" in results
        assert results["reconciliation"] is True
        assert results["app"] is True
