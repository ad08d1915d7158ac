"""
Integration tests for invoice line mutations.

Every mutation must leave the stored aggregate consistent with the lines,
keep line_order contiguous, and change nothing when it fails.
"""

from decimal import Decimal

import pytest

from tka_invoice.models import db, Invoice, InvoiceLine
from tka_invoice.services.invoice_lines import (InvoiceNotEditable, JobDescriptionNotFound, TkaWorkerNotFound,
                                                TooManyLines, add_line, create_invoice, delete_line, replace_lines)
from tka_invoice.services.totals import totals_are_consistent


def reload(invoice_id):
    db.session.expire_all()
    return db.session.get(Invoice, invoice_id)


def stored_totals(invoice):
    return (invoice.subtotal, invoice.vat_amount, invoice.total_amount)


class TestAddLineService:

    def test_add_line_recomputes_totals(self, db_session, draft_invoice, sample_jobs, second_worker, make_line):
        line = add_line(draft_invoice, make_line(second_worker, sample_jobs['training']))
        db_session.commit()

        invoice = reload(draft_invoice.id)
        assert line.line_order == 2
        assert line.baris == 2
        assert line.line_total == Decimal('59.00')
        # 1,000,059 * 11% = 110,006.49 -> 110,006
        assert invoice.subtotal == Decimal('1000059.00')
        assert invoice.vat_amount == Decimal('110006.00')
        assert invoice.total_amount == Decimal('1110065.00')
        assert totals_are_consistent(invoice)

    def test_add_line_with_custom_price(self, db_session, draft_invoice, sample_jobs, sample_worker, make_line):
        line = add_line(draft_invoice, make_line(sample_worker, sample_jobs['training'], quantity=2,
                                                 custom_price=Decimal('25000.00'), custom_job_name='Overtime'))
        db_session.commit()

        assert line.unit_price == Decimal('25000.00')
        assert line.line_total == Decimal('50000.00')
        assert line.job_name == 'Overtime'
        assert reload(draft_invoice.id).subtotal == Decimal('1050000.00')

    def test_zero_custom_price_is_not_replaced_by_catalog_price(self, db_session, draft_invoice, sample_jobs,
                                                                sample_worker, make_line):
        line = add_line(draft_invoice, make_line(sample_worker, sample_jobs['supervision'],
                                                 custom_price=Decimal('0')))
        db_session.commit()

        assert line.unit_price == Decimal('0')
        assert reload(draft_invoice.id).subtotal == Decimal('1000000.00')

    def test_inactive_job_rejected(self, db_session, draft_invoice, sample_jobs, sample_worker, make_line):
        before = stored_totals(draft_invoice)

        with pytest.raises(JobDescriptionNotFound):
            add_line(draft_invoice, make_line(sample_worker, sample_jobs['retired']))
        db_session.rollback()

        invoice = reload(draft_invoice.id)
        assert stored_totals(invoice) == before
        assert invoice.line_count == 1

    def test_custom_price_on_inactive_job_accepted(self, db_session, draft_invoice, sample_jobs, sample_worker,
                                                   make_line):
        line = add_line(draft_invoice, make_line(sample_worker, sample_jobs['retired'],
                                                 custom_price=Decimal('250000.00')))
        db_session.commit()

        assert line.unit_price == Decimal('250000.00')
        assert reload(draft_invoice.id).subtotal == Decimal('1250000.00')

    def test_unknown_worker_rejected(self, db_session, draft_invoice, sample_jobs, make_line):
        with pytest.raises(TkaWorkerNotFound) as exc_info:
            add_line(draft_invoice, {'tka_id': 9999, 'job_description_id': sample_jobs['training'].id,
                                     'quantity': 1})
        db_session.rollback()

        assert exc_info.value.status_code == 404
        assert reload(draft_invoice.id).line_count == 1

    def test_finalized_invoice_not_editable(self, db_session, draft_invoice, sample_jobs, sample_worker,
                                            make_line):
        draft_invoice.status = 'finalized'
        db_session.commit()

        with pytest.raises(InvoiceNotEditable) as exc_info:
            add_line(draft_invoice, make_line(sample_worker, sample_jobs['training']))
        assert exc_info.value.status_code == 409

    def test_line_limit(self, app, db_session, draft_invoice, sample_jobs, sample_worker, make_line):
        app.config['MAX_INVOICE_LINES'] = 2
        add_line(draft_invoice, make_line(sample_worker, sample_jobs['training']))

        with pytest.raises(TooManyLines):
            add_line(draft_invoice, make_line(sample_worker, sample_jobs['training']))


class TestReplaceLinesService:

    def test_replace_assigns_contiguous_order(self, db_session, draft_invoice, sample_jobs, sample_worker,
                                              second_worker, make_line):
        replace_lines(draft_invoice, [
            make_line(second_worker, sample_jobs['training'], quantity=2, baris=1),
            make_line(sample_worker, sample_jobs['supervision'], baris=1),
            make_line(sample_worker, sample_jobs['training']),
        ])
        db_session.commit()

        invoice = reload(draft_invoice.id)
        assert [line.line_order for line in invoice.lines] == [1, 2, 3]
        assert [line.baris for line in invoice.lines] == [1, 1, 3]
        assert invoice.subtotal == Decimal('1000177.00')
        assert totals_are_consistent(invoice)

    def test_replace_with_empty_list_zeroes_aggregate(self, db_session, draft_invoice):
        replace_lines(draft_invoice, [])
        db_session.commit()

        invoice = reload(draft_invoice.id)
        assert invoice.line_count == 0
        assert stored_totals(invoice) == (Decimal('0.00'), Decimal('0.00'), Decimal('0.00'))

    def test_equivalent_multisets_give_identical_aggregates(self, db_session, draft_invoice, sample_jobs,
                                                            sample_worker, second_worker, make_line):
        lines = [
            make_line(sample_worker, sample_jobs['supervision'], baris=1),
            make_line(second_worker, sample_jobs['training'], quantity=3, baris=1),
            make_line(sample_worker, sample_jobs['training'], custom_price=Decimal('163636.36'), baris=2),
        ]
        replace_lines(draft_invoice, lines)
        db_session.commit()
        first = stored_totals(reload(draft_invoice.id))

        regrouped = [dict(item, baris=index + 1) for index, item in enumerate(reversed(lines))]
        replace_lines(reload(draft_invoice.id), regrouped)
        db_session.commit()
        second = stored_totals(reload(draft_invoice.id))

        assert first == second

    def test_failed_replace_leaves_lines_unchanged(self, db_session, draft_invoice, sample_jobs, sample_worker,
                                                   make_line):
        before_totals = stored_totals(draft_invoice)
        before_lines = [(line.id, line.line_total) for line in draft_invoice.lines]

        with pytest.raises(TkaWorkerNotFound):
            replace_lines(draft_invoice, [
                make_line(sample_worker, sample_jobs['training']),
                {'tka_id': 9999, 'job_description_id': sample_jobs['training'].id, 'quantity': 1},
            ])
        db_session.rollback()

        invoice = reload(draft_invoice.id)
        assert stored_totals(invoice) == before_totals
        assert [(line.id, line.line_total) for line in invoice.lines] == before_lines

    def test_many_fractional_lines(self, db_session, draft_invoice, sample_jobs, sample_worker, make_line):
        lines = [make_line(sample_worker, sample_jobs['training'], custom_price=Decimal('0.10'))
                 for _ in range(25)]
        replace_lines(draft_invoice, lines)
        db_session.commit()

        invoice = reload(draft_invoice.id)
        assert invoice.subtotal == Decimal('2.50')
        # 0.275 rounds to 0
        assert invoice.vat_amount == Decimal('0.00')
        assert invoice.total_amount == Decimal('2.50')


class TestDeleteLineService:

    def test_delete_renumbers_and_recomputes(self, db_session, draft_invoice, sample_jobs, sample_worker,
                                             second_worker, make_line):
        replace_lines(draft_invoice, [
            make_line(sample_worker, sample_jobs['supervision']),
            make_line(second_worker, sample_jobs['training']),
            make_line(sample_worker, sample_jobs['training'], quantity=2),
        ])
        db_session.commit()

        invoice = reload(draft_invoice.id)
        delete_line(invoice, invoice.lines[0])
        db_session.commit()

        invoice = reload(draft_invoice.id)
        assert [line.line_order for line in invoice.lines] == [1, 2]
        assert invoice.subtotal == Decimal('177.00')
        # 177 * 11% = 19.47
        assert invoice.vat_amount == Decimal('19.00')
        assert totals_are_consistent(invoice)

    def test_delete_last_line(self, db_session, draft_invoice):
        delete_line(draft_invoice, draft_invoice.lines[0])
        db_session.commit()

        invoice = reload(draft_invoice.id)
        assert invoice.line_count == 0
        assert invoice.total_amount == Decimal('0.00')
        assert InvoiceLine.query.count() == 0


class TestLineRoutes:
    """Test the /api/invoices/<id>/lines endpoints."""

    def test_list_lines(self, client, draft_invoice):
        response = client.get(f'/api/invoices/{draft_invoice.id}/lines')

        assert response.status_code == 200
        data = response.get_json()
        assert len(data['data']) == 1
        assert Decimal(data['totals']['total_amount']) == Decimal('1110000.00')

    def test_post_line(self, client, draft_invoice, sample_jobs, second_worker, make_line):
        response = client.post(f'/api/invoices/{draft_invoice.id}/lines',
                               json=make_line(second_worker, sample_jobs['training']))

        assert response.status_code == 201
        data = response.get_json()
        assert data['data']['line_order'] == 2
        assert Decimal(data['totals']['vat_amount']) == Decimal('110006')
        assert Decimal(data['totals']['total_amount']) == Decimal('1110065')

    def test_post_invalid_line(self, client, draft_invoice, sample_jobs, second_worker, make_line):
        response = client.post(f'/api/invoices/{draft_invoice.id}/lines',
                               json=make_line(second_worker, sample_jobs['training'], quantity=0))

        assert response.status_code == 400
        assert 'quantity' in response.get_json()['errors']

    @pytest.mark.parametrize('price', ['NaN', 'Infinity'])
    def test_post_line_non_finite_price(self, client, draft_invoice, sample_jobs, second_worker, make_line, price):
        response = client.post(f'/api/invoices/{draft_invoice.id}/lines',
                               json=make_line(second_worker, sample_jobs['training'], custom_price=price))

        assert response.status_code == 400
        assert 'custom_price' in response.get_json()['errors']
        assert reload(draft_invoice.id).line_count == 1

    def test_post_line_unknown_job(self, client, draft_invoice, second_worker):
        response = client.post(f'/api/invoices/{draft_invoice.id}/lines',
                               json={'tka_id': second_worker.id, 'job_description_id': 9999, 'quantity': 1})

        assert response.status_code == 404
        assert reload(draft_invoice.id).line_count == 1

    def test_post_line_to_missing_invoice(self, client, sample_jobs, second_worker, make_line):
        response = client.post('/api/invoices/9999/lines', json=make_line(second_worker, sample_jobs['training']))

        assert response.status_code == 404

    def test_put_lines_replaces_all(self, client, draft_invoice, sample_jobs, sample_worker, second_worker,
                                    make_line):
        response = client.put(f'/api/invoices/{draft_invoice.id}/lines', json={'lines': [
            make_line(sample_worker, sample_jobs['training'], custom_price='50.00'),
            make_line(second_worker, sample_jobs['training'], custom_price='20.00'),
        ]})

        assert response.status_code == 200
        data = response.get_json()
        assert [line['line_order'] for line in data['data']] == [1, 2]
        # 70.00 * 11% = 7.70
        assert Decimal(data['totals']['subtotal']) == Decimal('70.00')
        assert Decimal(data['totals']['vat_amount']) == Decimal('8')

    def test_put_empty_lines(self, client, draft_invoice):
        response = client.put(f'/api/invoices/{draft_invoice.id}/lines', json={'lines': []})

        assert response.status_code == 200
        assert Decimal(response.get_json()['totals']['total_amount']) == Decimal('0')

    def test_delete_line(self, client, draft_invoice, sample_jobs, second_worker, make_line):
        client.post(f'/api/invoices/{draft_invoice.id}/lines', json=make_line(second_worker, sample_jobs['training']))
        first_line_id = reload(draft_invoice.id).lines[0].id

        response = client.delete(f'/api/invoices/{draft_invoice.id}/lines/{first_line_id}')

        assert response.status_code == 200
        data = response.get_json()
        assert [line['line_order'] for line in data['data']] == [1]
        assert Decimal(data['totals']['subtotal']) == Decimal('59.00')
        assert Decimal(data['totals']['vat_amount']) == Decimal('6')

    def test_delete_line_of_other_invoice(self, client, draft_invoice, db_session, sample_company, sample_jobs,
                                          sample_worker, make_line):
        other = create_invoice(sample_company.id, draft_invoice.invoice_date,
                               [make_line(sample_worker, sample_jobs['training'])])
        db_session.commit()

        response = client.delete(f'/api/invoices/{draft_invoice.id}/lines/{other.lines[0].id}')

        assert response.status_code == 404

    def test_lines_of_finalized_invoice_are_locked(self, client, db_session, draft_invoice, sample_jobs,
                                                   second_worker, make_line):
        draft_invoice.status = 'finalized'
        db_session.commit()

        response = client.post(f'/api/invoices/{draft_invoice.id}/lines',
                               json=make_line(second_worker, sample_jobs['training']))

        assert response.status_code == 409
        assert reload(draft_invoice.id).line_count == 1
