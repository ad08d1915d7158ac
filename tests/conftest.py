"""
Pytest configuration and fixtures for the TKA invoice tests.

This module provides:
- Flask test app built with the 'testing' config (in-memory SQLite,
  CSRF and rate limiting off)
- Sample catalog data: companies, job descriptions, TKA workers, bank accounts
- A draft invoice created through the line service
- Helpers for building line payloads
"""

from datetime import date
from decimal import Decimal

import pytest

from tka_invoice import create_app
from tka_invoice.models import db, AppSetting, BankAccount, Company, JobDescription, TkaWorker
from tka_invoice.services.invoice_lines import create_invoice


@pytest.fixture(scope='function')
def app():
    """Create Flask application for testing with a fresh database."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Database session for testing."""
    yield db.session
    db.session.rollback()


@pytest.fixture
def default_settings(db_session):
    """Seed the default application settings (11% VAT, INV prefix)."""
    AppSetting.create_default_settings()
    return AppSetting.get_all()


@pytest.fixture
def sample_company_data():
    return {
        'company_name': 'PT Maju Bersama',
        'npwp': '01.234.567.8-901.000',
        'idtku': '0012345678901000',
        'address': 'Jl. Thamrin No. 1, Jakarta Pusat',
        'contact_phone': '+62 21 555 0101',
        'contact_email': 'finance@majubersama.co.id'
    }


@pytest.fixture
def sample_company(db_session, sample_company_data):
    """Create a sample company in the database."""
    company = Company(**sample_company_data)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture
def second_company(db_session):
    company = Company(
        company_name='PT Nusantara Energi',
        npwp='02.345.678.9-012.000',
        idtku='0023456789012000',
        address='Jl. Gatot Subroto 5, Jakarta Selatan'
    )
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture
def sample_jobs(db_session, sample_company):
    """Job catalog: a round-million job, a small one and an inactive one."""
    jobs = {
        'supervision': JobDescription(company_id=sample_company.id, job_name='Site supervision',
                                      job_description='Monthly site supervision', price=Decimal('1000000.00'),
                                      sort_order=1),
        'training': JobDescription(company_id=sample_company.id, job_name='Operator training',
                                   job_description='Training for local operators', price=Decimal('59.00'),
                                   sort_order=2),
        'retired': JobDescription(company_id=sample_company.id, job_name='Legacy consulting',
                                  job_description='No longer offered', price=Decimal('500000.00'),
                                  is_active=False, sort_order=3),
    }
    db_session.add_all(jobs.values())
    db_session.commit()
    return jobs


@pytest.fixture
def sample_worker(db_session):
    worker = TkaWorker(nama='Zhang Wei', passport='E12345678', divisi='Engineering')
    db_session.add(worker)
    db_session.commit()
    return worker


@pytest.fixture
def second_worker(db_session):
    worker = TkaWorker(nama='Maria Santos', passport='P98765432', divisi='Training', jenis_kelamin='Perempuan')
    db_session.add(worker)
    db_session.commit()
    return worker


@pytest.fixture
def sample_bank_account(db_session):
    account = BankAccount(bank_name='Bank Central Asia', account_number='123-456-7890',
                          account_name='Spirit of Services', is_default=True)
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture
def make_line():
    """Build a line payload for a worker and job, with overrides."""
    def _make_line(worker, job, quantity=1, **overrides):
        line = {'tka_id': worker.id, 'job_description_id': job.id, 'quantity': quantity}
        line.update(overrides)
        return line
    return _make_line


@pytest.fixture
def draft_invoice(db_session, default_settings, sample_company, sample_jobs, sample_worker, make_line):
    """Draft invoice with one 1,000,000 line at 11%: VAT 110,000, total 1,110,000."""
    invoice = create_invoice(
        company_id=sample_company.id,
        invoice_date=date(2025, 8, 15),
        lines_data=[make_line(sample_worker, sample_jobs['supervision'])]
    )
    db_session.commit()
    return invoice


@pytest.fixture
def invoice_payload(sample_company, sample_jobs, sample_worker, second_worker, make_line):
    """JSON body for POST /api/invoices with two lines sharing row 1."""
    return {
        'company_id': sample_company.id,
        'invoice_date': '2025-08-15',
        'notes': 'August placement',
        'lines': [
            make_line(sample_worker, sample_jobs['supervision'], quantity=1, baris=1),
            make_line(second_worker, sample_jobs['training'], quantity=1, baris=1),
        ]
    }
