#!/usr/bin/env python
"""
Seed database with a sample startup and an Indian rule set.

This script creates one startup (with a subsidiary and an international
operation) and the compliance rules for Indian private limited companies,
so the API and CLI have something to show.
"""

import json
import sys
from datetime import date

from regtrack.db import ComplianceRuleDB, InternationalOpDB, StartupDB, SubsidiaryDB
from regtrack.stores import RuleStore, StartupStore

SAMPLE_RULES = [
    ComplianceRuleDB(
        country_code="IN",
        company_type="Private Limited",
        compliance_name="Commencement of Business (INC-20A)",
        compliance_description="Declaration of commencement of business within 180 days of incorporation",
        frequency="first-year",
        verification_required="CS",
        cs_type="Company Secretary",
    ),
    ComplianceRuleDB(
        country_code="IN",
        company_type="Private Limited",
        compliance_name="Auditor Appointment (ADT-1)",
        compliance_description="Appointment of the first statutory auditor",
        frequency="first-year",
        verification_required="both",
        ca_type="Chartered Accountant",
        cs_type="Company Secretary",
    ),
    ComplianceRuleDB(
        country_code="IN",
        company_type="Private Limited",
        compliance_name="Annual Return (MGT-7A)",
        compliance_description="Annual return filed with the Registrar of Companies",
        frequency="annual",
        verification_required="CS",
        cs_type="Company Secretary",
    ),
    ComplianceRuleDB(
        country_code="IN",
        company_type="Private Limited",
        compliance_name="Financial Statements (AOC-4)",
        compliance_description="Audited financial statements filed with the Registrar of Companies",
        frequency="annual",
        verification_required="both",
        ca_type="Chartered Accountant",
        cs_type="Company Secretary",
    ),
    ComplianceRuleDB(
        country_code="IN",
        company_type="Private Limited",
        compliance_name="GST Return (GSTR-3B)",
        compliance_description="Summary GST return",
        frequency="quarterly",
        verification_required="CA",
        ca_type="Chartered Accountant",
    ),
    ComplianceRuleDB(
        country_code="IN",
        company_type="Private Limited",
        compliance_name="TDS Payment",
        compliance_description="Deposit of tax deducted at source",
        frequency="monthly",
        verification_required="CA",
        ca_type="Chartered Accountant",
    ),
]

SAMPLE_STARTUP = StartupDB(
    name="Acme Fintech",
    country_of_registration="India",
    company_type="Private Limited",
    registration_date=date(2023, 4, 12),
    ca_service_code="CA-001",
    cs_service_code="CS-001",
)

# Extra rules from sample_rules.json if available
try:
    with open("sample_rules.json", "r") as f:
        for rule_data in json.load(f):
            SAMPLE_RULES.append(ComplianceRuleDB(**rule_data))
except (FileNotFoundError, json.JSONDecodeError):
    # Continue with default sample rules
    pass
except TypeError as e:
    sys.exit(f"⛔ invalid rule in sample_rules.json: {e}")


def seed_database() -> int:
    """Add the sample rules and startup; return the startup id."""
    rules = RuleStore()
    for rule in SAMPLE_RULES:
        added = rules.add(rule)
        print(f"Added rule: {added.name} ({added.frequency})")

    startups = StartupStore()
    startup_id = startups.add(SAMPLE_STARTUP)
    startups.add_subsidiary(SubsidiaryDB(
        startup_id=startup_id,
        country="United States",
        company_type="C-Corporation",
        registration_date=date(2024, 2, 1),
    ))
    startups.add_international_op(InternationalOpDB(
        startup_id=startup_id,
        country="Singapore",
        company_type="Branch Office",
        start_date=date(2024, 9, 1),
    ))
    print(f"\nAdded startup {startup_id} with {len(SAMPLE_RULES)} rules")
    return startup_id


if __name__ == "__main__":
    # Initialize DB if needed
    from regtrack.db import create_all
    print("Ensuring database tables exist...")
    create_all()

    print("Seeding database with a sample startup...")
    sid = seed_database()

    print("\nDone! Try:")
    print(f"python -m regtrack.cli tasks {sid}")
    print("uvicorn api.main:app --reload --port 8001")
