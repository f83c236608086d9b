"""
Tests for verified-attribute aggregation
"""
from types import SimpleNamespace

from sqlalchemy.orm import Session

from services.aggregation_service import aggregate_attributes, get_aggregated_verified_attributes
from services.verification_store import VerifiedPanelistStore


def test_counts_sum_to_non_empty_values_per_field():
    records = [
        SimpleNamespace(job_title="Engineer", industry="Technology", company_size="51-200"),
        SimpleNamespace(job_title="Engineer", industry=None, company_size="51-200"),
        SimpleNamespace(job_title="Manager", industry="", company_size="1-10"),
    ]

    report = aggregate_attributes(records)

    assert report["jobTitle"] == {"Engineer": 2, "Manager": 1}
    assert report["industry"] == {"Technology": 1}
    assert report["companySize"] == {"51-200": 2, "1-10": 1}
    # Missing attributes on the record are skipped, not errors
    assert report["jobFunction"] == {}
    assert report["employmentStatus"] == {}


def test_report_only_aggregates_verified_rows(db: Session):
    store = VerifiedPanelistStore(db)
    store.upsert("a", status="verified", attributes={"job_title": "Engineer", "industry": "Technology"})
    store.upsert("b", status="verified", attributes={"job_title": "Engineer"})
    store.upsert("c", status="failed", attributes={"job_title": "Director"})

    report = get_aggregated_verified_attributes(store)

    assert report["totalVerified"] == 2
    assert report["totalFailed"] == 1
    assert report["jobTitle"] == {"Engineer": 2}
    assert report["industry"] == {"Technology": 1}
    assert sum(report["jobTitle"].values()) == report["totalVerified"]


def test_empty_ledger_report(db: Session):
    report = get_aggregated_verified_attributes(VerifiedPanelistStore(db))

    assert report == {
        "jobTitle": {},
        "industry": {},
        "companySize": {},
        "jobFunction": {},
        "employmentStatus": {},
        "totalVerified": 0,
        "totalFailed": 0,
    }
