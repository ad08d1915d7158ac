"""
Integration tests for the flask CLI commands.
"""

from decimal import Decimal

import pytest

from tka_invoice.models import db, AppSetting, Company, Invoice
from tka_invoice.services.totals import totals_are_consistent


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestCliCommands:

    def test_init_db(self, runner):
        result = runner.invoke(args=['init-db'])

        assert result.exit_code == 0
        assert 'Database tables created' in result.output

    def test_init_settings(self, runner, db_session):
        result = runner.invoke(args=['init-settings'])

        assert 'Created 3 default settings.' in result.output
        assert AppSetting.get_value('invoice_prefix') == 'INV'

        again = runner.invoke(args=['init-settings'])
        assert 'Created 0 default settings.' in again.output

    def test_seed_data(self, runner, db_session):
        result = runner.invoke(args=['seed-data'])

        assert result.exit_code == 0
        assert 'Sample data created successfully.' in result.output
        assert Company.query.count() == 1
        invoice = Invoice.query.one()
        assert invoice.line_count == 2
        assert invoice.subtotal == Decimal('5550001.50')
        # 5,550,001.50 * 11% = 610,500.165
        assert invoice.vat_amount == Decimal('610500.00')
        assert totals_are_consistent(invoice)

        again = runner.invoke(args=['seed-data'])
        assert 'already exists' in again.output

    def test_check_totals_reports_and_fixes(self, runner, db_session, draft_invoice):
        draft_invoice.vat_amount = Decimal('1.00')
        draft_invoice.total_amount = Decimal('1000001.00')
        db_session.commit()

        report = runner.invoke(args=['check-totals'])
        assert f'{draft_invoice.invoice_number}: stored total' in report.output

        fixed = runner.invoke(args=['check-totals', '--fix'])
        assert 'Fixed 1 invoices.' in fixed.output

        db.session.expire_all()
        invoice = db.session.get(Invoice, draft_invoice.id)
        assert invoice.total_amount == Decimal('1110000.00')
        assert 'consistent' in runner.invoke(args=['check-totals']).output

    def test_check_totals_clean(self, runner, draft_invoice):
        result = runner.invoke(args=['check-totals'])

        assert 'All invoice totals are consistent.' in result.output
        assert 'stored total' not in result.output
