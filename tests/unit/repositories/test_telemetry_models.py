"""
Unit tests for the ORM table definitions.
"""
import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable

from machinehub.infrastructure.database.models import (
    ProcessedTelemetryModel,
    SupplierFetchLogModel,
    TelemetryDeliveryModel,
)


def ddl(model) -> str:
    return str(CreateTable(model.__table__).compile(dialect=postgresql.dialect()))


class TestStatusConstraints:
    @pytest.mark.parametrize("model, name", [
        (ProcessedTelemetryModel, "ck_processed_telemetry_status"),
        (TelemetryDeliveryModel, "ck_telemetry_deliveries_status"),
    ])
    def test_status_check_matches_migration(self, model, name):
        statement = ddl(model)

        assert f"CONSTRAINT {name} CHECK" in statement
        assert "status IN ('pending', 'processing', 'forwarded', 'failed', 'error')" in statement

    def test_fetch_log_has_no_status(self):
        assert "CHECK" not in ddl(SupplierFetchLogModel)
