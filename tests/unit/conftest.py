import pytest

from leak_radar.db import create_db_engine, init_db, make_session_factory
from leak_radar.store import RevenueStore

from billing_fakes import DAY, NOW, make_invoice, make_subscription


@pytest.fixture()
def store():
    engine = create_db_engine('sqlite://')
    init_db(engine)
    yield RevenueStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture()
def billing_account():
    """A small account with one example of every issue type."""
    customers = [
        {'id': 'cus_1', 'email': 'ada@example.com', 'name': 'Ada'},
        {'id': 'cus_2', 'email': 'grace@example.com', 'name': 'Grace'},
        {
            'id': 'cus_3',
            'email': 'linus@example.com',
            'name': 'Linus',
            'invoice_settings': {'default_payment_method': 'pm_3'},
        },
    ]
    subscriptions = [
        make_subscription('sub_1', unit_amount=10000, customer='cus_1', nickname='Growth'),
        make_subscription('sub_2', unit_amount=120000, interval='year', customer='cus_2'),
        make_subscription('sub_3', unit_amount=5000, customer='cus_3'),
    ]
    invoices = [
        make_invoice('in_overdue', customer='cus_1', amount_due=10000,
                     due_date=int(NOW - 40 * DAY), subscription='sub_1'),
        make_invoice('in_late', customer='cus_2', amount_due=2500, due_date=int(NOW - 5 * DAY)),
        make_invoice('in_future', customer='cus_2', amount_due=999, due_date=int(NOW + 3 * DAY)),
    ]
    payment_methods = [
        # midnight 2026-04-01 is 21.5 days after NOW
        {'id': 'pm_3', 'type': 'card', 'card': {'exp_month': 4, 'exp_year': 2026, 'last4': '4242'}},
    ]
    charges = [{'id': 'ch_1', 'customer': 'cus_2'}]
    disputes = [
        {
            'id': 'dp_1',
            'status': 'needs_response',
            'amount': 7500,
            'reason': 'fraudulent',
            'charge': 'ch_1',
            'evidence_details': {'due_by': int(NOW + 6 * DAY)},
        },
        {'id': 'dp_2', 'status': 'under_review', 'amount': 1200, 'reason': 'duplicate', 'charge': 'ch_1'},
        {'id': 'dp_3', 'status': 'won', 'amount': 99999, 'reason': 'general', 'charge': 'ch_1'},
    ]
    return dict(
        customers=customers,
        subscriptions=subscriptions,
        invoices=invoices,
        payment_methods=payment_methods,
        charges=charges,
        disputes=disputes,
    )
