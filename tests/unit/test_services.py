"""
Unit tests for service layer functionality.

Tests cover:
- Invoice numbering service (generation, preview, format validation)
- Status transition service (allowed moves, terminal states)
- Indonesian amount-in-words conversion
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from tka_invoice.models import AppSetting, Invoice, InvoiceSequence
from tka_invoice.services.numbering import (
    format_invoice_number,
    generate_invoice_number,
    is_invoice_number_available,
    preview_invoice_number,
    validate_invoice_number_format
)
from tka_invoice.services.status_transitions import InvoiceStatusTransition, StatusTransitionError
from tka_invoice.services.terbilang import amount_to_words, number_to_words

AUGUST_2025 = date(2025, 8, 15)


class TestNumberingService:
    """Test invoice numbering service."""

    def test_format_invoice_number(self):
        assert format_invoice_number('INV', 2025, 8, 1) == 'INV-25-08-001'
        assert format_invoice_number('INV', 2030, 12, 1234) == 'INV-30-12-1234'

    def test_generate_sequential_numbers(self, db_session):
        assert generate_invoice_number(AUGUST_2025) == 'INV-25-08-001'
        assert generate_invoice_number(AUGUST_2025) == 'INV-25-08-002'

    def test_sequence_is_per_month(self, db_session):
        generate_invoice_number(AUGUST_2025)
        generate_invoice_number(AUGUST_2025)

        assert generate_invoice_number(date(2025, 9, 1)) == 'INV-25-09-001'

        sequence = InvoiceSequence.query.filter_by(year=2025, month=8).one()
        assert sequence.current_number == 2

    def test_prefix_comes_from_settings(self, db_session, default_settings):
        AppSetting.set_value('invoice_prefix', 'TKA')
        db_session.commit()

        assert generate_invoice_number(AUGUST_2025) == 'TKA-25-08-001'

    def test_preview_does_not_consume(self, db_session):
        assert preview_invoice_number(AUGUST_2025) == 'INV-25-08-001'
        assert preview_invoice_number(AUGUST_2025) == 'INV-25-08-001'
        assert generate_invoice_number(AUGUST_2025) == 'INV-25-08-001'
        assert preview_invoice_number(AUGUST_2025) == 'INV-25-08-002'

    def test_skips_numbers_already_taken(self, db_session, sample_company):
        db_session.add(Invoice(invoice_number='INV-25-08-001', company_id=sample_company.id,
                               invoice_date=AUGUST_2025))
        db_session.commit()

        assert not is_invoice_number_available('INV-25-08-001')
        assert generate_invoice_number(AUGUST_2025) == 'INV-25-08-002'

    @pytest.mark.parametrize('number', ['INV-25-08-001', 'TKA-99-12-1234', 'A-00-01-000'])
    def test_valid_formats(self, number):
        assert validate_invoice_number_format(number)

    @pytest.mark.parametrize('number', ['inv-25-08-001', 'INV-2025-08-001', 'INV-25-8-001',
                                        'INV-25-08-01', 'INV25-08-001', '', None, 123])
    def test_invalid_formats(self, number):
        assert not validate_invoice_number_format(number)


class TestStatusTransitionService:
    """Test status transition service."""

    def make_invoice(self, status, lines=None):
        return SimpleNamespace(status=status, lines=[object()] if lines is None else lines, updated_at=None)

    def test_draft_can_be_finalized(self):
        invoice = self.make_invoice('draft')

        message = InvoiceStatusTransition.transition_invoice_status(invoice, 'finalized')

        assert invoice.status == 'finalized'
        assert message == 'Invoice has been finalized.'
        assert invoice.updated_at is not None

    def test_draft_without_lines_cannot_be_finalized(self):
        invoice = self.make_invoice('draft', lines=[])

        can_change, error = InvoiceStatusTransition.can_transition_to(invoice, 'finalized')

        assert not can_change
        assert 'without lines' in error

    def test_draft_cannot_jump_to_paid(self):
        invoice = self.make_invoice('draft')

        with pytest.raises(StatusTransitionError) as exc_info:
            InvoiceStatusTransition.transition_invoice_status(invoice, 'paid')

        assert exc_info.value.status_code == 409
        assert invoice.status == 'draft'

    @pytest.mark.parametrize('start, target', [
        ('draft', 'cancelled'),
        ('finalized', 'paid'),
        ('finalized', 'cancelled'),
    ])
    def test_allowed_transitions(self, start, target):
        invoice = self.make_invoice(start)

        InvoiceStatusTransition.transition_invoice_status(invoice, target)

        assert invoice.status == target

    @pytest.mark.parametrize('terminal', ['paid', 'cancelled'])
    def test_terminal_statuses(self, terminal):
        assert InvoiceStatusTransition.get_valid_transitions(terminal) == []
        for target in InvoiceStatusTransition.VALID_STATUSES:
            can_change, _ = InvoiceStatusTransition.can_transition_to(self.make_invoice(terminal), target)
            assert not can_change

    def test_finalized_cannot_return_to_draft(self):
        can_change, _ = InvoiceStatusTransition.can_transition_to(self.make_invoice('finalized'), 'draft')
        assert not can_change

    def test_same_status_rejected(self):
        can_change, error = InvoiceStatusTransition.can_transition_to(self.make_invoice('draft'), 'draft')

        assert not can_change
        assert 'already' in error

    def test_unknown_status_is_bad_request(self):
        with pytest.raises(StatusTransitionError) as exc_info:
            InvoiceStatusTransition.transition_invoice_status(self.make_invoice('draft'), 'archived')

        assert exc_info.value.status_code == 400

    def test_display_names(self):
        assert InvoiceStatusTransition.get_status_display_name('finalized') == 'Finalized'
        assert InvoiceStatusTransition.get_status_display_name('unknown') == 'unknown'


class TestTerbilang:
    """Test Indonesian number-to-words conversion."""

    @pytest.mark.parametrize('number, words', [
        (0, 'nol'),
        (1, 'satu'),
        (10, 'sepuluh'),
        (11, 'sebelas'),
        (15, 'lima belas'),
        (20, 'dua puluh'),
        (21, 'dua puluh satu'),
        (100, 'seratus'),
        (101, 'seratus satu'),
        (110, 'seratus sepuluh'),
        (250, 'dua ratus lima puluh'),
        (1000, 'seribu'),
        (1500, 'seribu lima ratus'),
        (2000, 'dua ribu'),
        (11000, 'sebelas ribu'),
        (100000, 'seratus ribu'),
        (1000000, 'satu juta'),
        (1001000, 'satu juta seribu'),
        (1110000, 'satu juta seratus sepuluh ribu'),
        (1000000000, 'satu miliar'),
        (1000000000000, 'satu triliun'),
    ])
    def test_number_to_words(self, number, words):
        assert number_to_words(number) == words

    def test_negative_numbers(self):
        assert number_to_words(-5) == 'minus lima'

    def test_decimals_use_koma(self):
        assert number_to_words(Decimal('12.5')) == 'dua belas koma lima puluh'

    def test_amount_to_words(self):
        assert amount_to_words(Decimal('1110000.00')) == 'Satu juta seratus sepuluh ribu Rupiah'

    def test_amount_to_words_drops_cents(self):
        assert amount_to_words(Decimal('181636.36')) == \
            'Seratus delapan puluh satu ribu enam ratus tiga puluh enam Rupiah'

    def test_amount_zero(self):
        assert amount_to_words(0) == 'Nol Rupiah'
