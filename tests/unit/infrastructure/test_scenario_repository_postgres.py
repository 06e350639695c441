from datetime import datetime, timezone
from decimal import Decimal

import pytest

import src.infrastructure.scenarios.postgres as postgres_module
from src.core.scenarios.models import (
    AppliedFieldChange,
    AppliedFundChange,
    FundRecord,
    LiveInstanceRecord,
    ScenarioFundingApplicationRecord,
    ScenarioInstanceSnapshot,
    ScenarioRecord,
)
from src.infrastructure.scenarios.postgres import PostgresScenarioRepository

_NOW = datetime(2026, 2, 19, 12, 0, tzinfo=timezone.utc)


class _FakeCursor:
    def __init__(self, row=None, rows=None):
        self._row = row
        self._rows = rows or []

    def fetchone(self):
        return self._row

    def fetchall(self):
        return list(self._rows)


class _FakeConnection:
    def __init__(self):
        self.scenarios = {}
        self.instances = {}
        self.funds = {}
        self.applications = {}
        self.schema_migrations = {}
        self.queries: list[str] = []
        self.commit_count = 0
        self.rollback_count = 0
        self.close_count = 0

    def execute(self, query, args=None):
        sql = " ".join(str(query).split())
        self.queries.append(sql)
        if sql.startswith("SELECT pg_advisory_"):
            return _FakeCursor()
        if "FROM schema_migrations" in sql:
            rows = [
                {"version": version, "checksum": checksum}
                for (namespace, version), checksum in self.schema_migrations.items()
                if namespace == args[0]
            ]
            return _FakeCursor(rows=sorted(rows, key=lambda row: row["version"]))
        if "INSERT INTO schema_migrations" in sql:
            self.schema_migrations[(args[1], args[0])] = args[2]
            return _FakeCursor()
        if "INSERT INTO scenario_records" in sql:
            self.scenarios[args[0]] = dict(
                zip(
                    (
                        "scenario_id",
                        "owner_id",
                        "name",
                        "description",
                        "is_primary",
                        "status",
                        "tags_json",
                        "settings_json",
                        "snapshot_json",
                        "snapshot_version",
                        "created_at",
                        "updated_at",
                    ),
                    args,
                )
            )
            return _FakeCursor()
        if "FROM scenario_records WHERE scenario_id = %s" in sql:
            return _FakeCursor(self.scenarios.get(args[0]))
        if "FROM scenario_records WHERE owner_id = %s" in sql:
            rows = [row for row in self.scenarios.values() if row["owner_id"] == args[0]]
            rows = sorted(
                rows, key=lambda row: (row["updated_at"], row["scenario_id"]), reverse=True
            )
            return _FakeCursor(rows=rows)
        if "INSERT INTO live_instances" in sql:
            self.instances[args[0]] = dict(
                zip(
                    (
                        "instance_id",
                        "owner_id",
                        "name",
                        "fields_json",
                        "version",
                        "created_at",
                        "updated_at",
                    ),
                    args,
                )
            )
            return _FakeCursor()
        if "FROM live_instances WHERE instance_id = %s" in sql:
            return _FakeCursor(self.instances.get(args[0]))
        if "INSERT INTO funds" in sql:
            self.funds[args[0]] = dict(
                zip(
                    (
                        "fund_id",
                        "owner_id",
                        "fund_type",
                        "name",
                        "total_amount",
                        "available_amount",
                    ),
                    args,
                )
            )
            return _FakeCursor()
        if "FROM funds WHERE fund_id = %s" in sql:
            return _FakeCursor(self.funds.get(args[0]))
        if "INSERT INTO scenario_funding_applications" in sql:
            row = dict(
                zip(
                    (
                        "application_id",
                        "owner_id",
                        "scenario_instance_id",
                        "target_instance_id",
                        "operation_type",
                        "status",
                        "field_changes_json",
                        "funding_changes_json",
                        "fund_changes_json",
                        "scenario_instance_before_json",
                        "applied_at",
                        "rolled_back_at",
                    ),
                    args,
                )
            )
            existing = self.applications.get(args[0])
            if existing is not None:
                existing.update(status=row["status"], rolled_back_at=row["rolled_back_at"])
            else:
                self.applications[args[0]] = row
            return _FakeCursor()
        if "FROM scenario_funding_applications WHERE application_id = %s" in sql:
            return _FakeCursor(self.applications.get(args[0]))
        if "FROM scenario_funding_applications WHERE owner_id = %s" in sql:
            rows = [row for row in self.applications.values() if row["owner_id"] == args[0]]
            if "scenario_instance_id = %s" in sql:
                rows = [row for row in rows if row["scenario_instance_id"] == args[1]]
            return _FakeCursor(rows=rows)
        return _FakeCursor()

    def commit(self):
        self.commit_count += 1

    def rollback(self):
        self.rollback_count += 1

    def close(self):
        self.close_count += 1


@pytest.fixture
def connection(monkeypatch):
    fake = _FakeConnection()
    monkeypatch.setattr(postgres_module, "find_spec", lambda _name: object())
    monkeypatch.setattr(PostgresScenarioRepository, "_connect", lambda self: fake)
    return fake


def _application(**overrides) -> ScenarioFundingApplicationRecord:
    payload = {
        "application_id": "sfa_1",
        "owner_id": "user_1",
        "scenario_instance_id": "si_1",
        "target_instance_id": "inst_1",
        "operation_type": "update",
        "field_changes": [
            AppliedFieldChange(
                field="weekly_rent",
                existed_before=True,
                before={"mode": "auto", "auto": 500, "manual": None},
                after={"mode": "manual", "auto": 500, "manual": 550},
            )
        ],
        "fund_changes": [
            AppliedFundChange(
                fund_id="fund_loan_1",
                before_available=Decimal("90000"),
                after_available=Decimal("70000"),
            )
        ],
        "scenario_instance_before": ScenarioInstanceSnapshot(
            source_instance_id="inst_1", status="draft"
        ),
        "applied_at": _NOW,
    }
    payload.update(overrides)
    return ScenarioFundingApplicationRecord(**payload)


def test_postgres_repository_requires_dsn():
    with pytest.raises(RuntimeError) as exc:
        PostgresScenarioRepository(dsn="")
    assert str(exc.value) == "SCENARIO_POSTGRES_DSN_REQUIRED"


def test_postgres_repository_requires_driver(monkeypatch):
    monkeypatch.setattr(postgres_module, "find_spec", lambda _name: None)
    with pytest.raises(RuntimeError) as exc:
        PostgresScenarioRepository(dsn="postgresql://u:p@localhost:5432/scenarios")
    assert str(exc.value) == "SCENARIO_POSTGRES_DRIVER_MISSING"


def test_postgres_repository_runs_scenario_migrations_on_init(connection):
    PostgresScenarioRepository(dsn="postgresql://u:p@localhost:5432/scenarios")

    assert ("scenarios", "scenarios:0001") in connection.schema_migrations
    assert any(
        query.startswith("CREATE TABLE IF NOT EXISTS scenario_records")
        for query in connection.queries
    )
    assert connection.commit_count == 1
    assert connection.close_count == 1


def test_postgres_repository_round_trips_scenarios(connection):
    repository = PostgresScenarioRepository(dsn="postgresql://u:p@localhost:5432/scenarios")
    scenario = ScenarioRecord(
        scenario_id="sc_1",
        owner_id="user_1",
        name="Conservative",
        is_primary=True,
        tags=["rates"],
        settings={"horizon_years": 10},
        created_at=_NOW,
        updated_at=_NOW,
    )

    repository.create_scenario(scenario)

    assert repository.get_scenario(scenario_id="sc_1") == scenario
    assert repository.list_scenarios(owner_id="user_1") == [scenario]
    assert repository.list_scenarios(owner_id="user_2") == []
    assert repository.get_scenario(scenario_id="sc_missing") is None


def test_postgres_session_locks_rows_read_for_update(connection):
    repository = PostgresScenarioRepository(dsn="postgresql://u:p@localhost:5432/scenarios")
    repository.create_instance(
        LiveInstanceRecord(
            instance_id="inst_1",
            owner_id="user_1",
            name="Unit 4",
            fields={"weekly_rent": {"mode": "auto", "auto": 500, "manual": None}},
            created_at=_NOW,
            updated_at=_NOW,
        )
    )

    with repository.atomic() as store:
        locked = store.get_instance(instance_id="inst_1", for_update=True)

    assert locked.fields["weekly_rent"]["auto"] == 500
    assert connection.queries[-1].endswith("WHERE instance_id = %s FOR UPDATE")


def test_postgres_atomic_rolls_back_on_error(connection):
    repository = PostgresScenarioRepository(dsn="postgresql://u:p@localhost:5432/scenarios")
    commits_before = connection.commit_count

    with pytest.raises(RuntimeError):
        with repository.atomic() as store:
            store.create_fund(
                FundRecord(
                    fund_id="fund_loan_1",
                    owner_id="user_1",
                    fund_type="loan",
                    name="Offset loan",
                    total_amount=Decimal("100000"),
                    available_amount=Decimal("100000"),
                )
            )
            raise RuntimeError("boom")

    assert connection.rollback_count == 1
    assert connection.commit_count == commits_before


def test_postgres_repository_round_trips_funds_as_decimals(connection):
    repository = PostgresScenarioRepository(dsn="postgresql://u:p@localhost:5432/scenarios")
    repository.create_fund(
        FundRecord(
            fund_id="fund_loan_1",
            owner_id="user_1",
            fund_type="loan",
            name="Offset loan",
            total_amount=Decimal("100000.00"),
            available_amount=Decimal("10000.00"),
        )
    )

    stored = repository.get_fund(fund_id="fund_loan_1", for_update=True)

    assert stored.total_amount == Decimal("100000")
    assert stored.available_amount == Decimal("10000")


def test_postgres_repository_round_trips_applications_and_status_updates(connection):
    repository = PostgresScenarioRepository(dsn="postgresql://u:p@localhost:5432/scenarios")
    application = _application()
    repository.create_application(application)

    assert repository.get_application(application_id="sfa_1") == application

    application.status = "rolled_back"
    application.rolled_back_at = _NOW
    repository.update_application(application)

    stored = repository.list_applications(owner_id="user_1", scenario_instance_id="si_1")
    assert [(row.application_id, row.status) for row in stored] == [("sfa_1", "rolled_back")]
    assert stored[0].fund_changes[0].after_available == Decimal("70000")
    assert repository.list_applications(owner_id="user_1", scenario_instance_id="si_2") == []
