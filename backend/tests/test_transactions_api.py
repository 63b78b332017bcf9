"""
Transaction API tests.

Verifies:
- Purchase, adjustment, transfer and redemption endpoints end to end
- Listing filters and their validation
- Suspicious and processed state flips over HTTP
"""

from conftest import auth_headers
from loyalty.extensions import db
from loyalty.models import User


def _purchase(client, cashier, customer, spent=25.0, **extra):
    body = {'type': 'purchase', 'utorid': customer.utorid, 'spent': spent}
    body.update(extra)
    return client.post('/transactions', json=body, headers=auth_headers(cashier))


def _points(user):
    return db.session.get(User, user.id).points


class TestPurchaseEndpoint:
    def test_purchase(self, client, cashier, regular):
        resp = _purchase(client, cashier, regular, remark='Coffee')

        assert resp.status_code == 201
        assert resp.json['earned'] == 100
        assert resp.json['createdBy'] == cashier.utorid
        assert resp.json['remark'] == 'Coffee'
        assert _points(regular) == 100

    def test_purchase_validation(self, client, cashier, regular):
        assert _purchase(client, cashier, regular, spent=-1).status_code == 400
        assert _purchase(client, cashier, regular, spent='10').status_code == 400
        assert _purchase(client, cashier, regular, promotionIds='1').status_code == 400
        assert _purchase(client, cashier, regular, amount=5).status_code == 400

    def test_unknown_type(self, client, cashier, regular):
        resp = client.post('/transactions', json={'type': 'gift', 'utorid': regular.utorid},
                           headers=auth_headers(cashier))
        assert resp.status_code == 400

    def test_regular_cannot_purchase(self, client, regular, other_regular):
        assert _purchase(client, regular, other_regular).status_code == 403


class TestAdjustmentEndpoint:
    def test_manager_adjusts(self, client, cashier, manager, regular):
        purchase_id = _purchase(client, cashier, regular).json['id']

        resp = client.post(
            '/transactions',
            json={'type': 'adjustment', 'utorid': regular.utorid, 'amount': -20, 'relatedId': purchase_id},
            headers=auth_headers(manager),
        )

        assert resp.status_code == 201
        assert resp.json['relatedId'] == purchase_id
        assert _points(regular) == 80

    def test_cashier_cannot_adjust(self, client, cashier, regular):
        purchase_id = _purchase(client, cashier, regular).json['id']
        resp = client.post(
            '/transactions',
            json={'type': 'adjustment', 'utorid': regular.utorid, 'amount': 5, 'relatedId': purchase_id},
            headers=auth_headers(cashier),
        )
        assert resp.status_code == 403


class TestListing:
    def test_filters(self, client, cashier, manager, regular, other_regular):
        _purchase(client, cashier, regular, spent=25.0)
        _purchase(client, cashier, other_regular, spent=5.0)
        headers = auth_headers(manager)

        resp = client.get('/transactions', headers=headers)
        assert resp.json['count'] == 2

        resp = client.get(f'/transactions?name={regular.utorid}', headers=headers)
        assert [t['utorid'] for t in resp.json['results']] == [regular.utorid]

        resp = client.get('/transactions?amount=50&operator=gte', headers=headers)
        assert [t['amount'] for t in resp.json['results']] == [100]

        resp = client.get('/transactions?type=redemption', headers=headers)
        assert resp.json['count'] == 0

    def test_filter_validation(self, client, manager):
        headers = auth_headers(manager)
        assert client.get('/transactions?type=bogus', headers=headers).status_code == 400
        assert client.get('/transactions?relatedId=3', headers=headers).status_code == 400
        assert client.get('/transactions?amount=3', headers=headers).status_code == 400
        assert client.get('/transactions?amount=3&operator=eq', headers=headers).status_code == 400

    def test_newest_first(self, client, cashier, manager, regular):
        first = _purchase(client, cashier, regular, spent=1.0).json['id']
        second = _purchase(client, cashier, regular, spent=2.0).json['id']

        resp = client.get('/transactions', headers=auth_headers(manager))
        assert [t['id'] for t in resp.json['results']] == [second, first]

    def test_my_transactions(self, client, cashier, regular, other_regular):
        _purchase(client, cashier, regular)
        _purchase(client, cashier, other_regular)

        resp = client.get('/users/me/transactions', headers=auth_headers(regular))
        assert resp.status_code == 200
        assert resp.json['count'] == 1
        assert resp.json['results'][0]['utorid'] == regular.utorid

    def test_get_one(self, client, cashier, manager, regular):
        tx_id = _purchase(client, cashier, regular).json['id']

        resp = client.get(f'/transactions/{tx_id}', headers=auth_headers(manager))
        assert resp.status_code == 200
        assert resp.json['type'] == 'purchase'
        assert client.get('/transactions/9999', headers=auth_headers(manager)).status_code == 404


class TestStateFlips:
    def test_suspicious_toggle(self, client, cashier, manager, regular):
        tx_id = _purchase(client, cashier, regular).json['id']
        headers = auth_headers(manager)

        resp = client.patch(f'/transactions/{tx_id}/suspicious', json={'suspicious': True}, headers=headers)
        assert resp.status_code == 200
        assert resp.json['suspicious'] is True
        assert _points(regular) == 0

        resp = client.patch(f'/transactions/{tx_id}/suspicious', json={'suspicious': 'no'}, headers=headers)
        assert resp.status_code == 400

        resp = client.patch(f'/transactions/{tx_id}/suspicious', json={'suspicious': False}, headers=headers)
        assert resp.status_code == 200
        assert _points(regular) == 100

    def test_redemption_flow(self, client, cashier, regular):
        _purchase(client, cashier, regular)

        resp = client.post('/users/me/transactions', json={'type': 'redemption', 'amount': 30},
                           headers=auth_headers(regular))
        assert resp.status_code == 201
        assert resp.json['processedBy'] is None
        tx_id = resp.json['id']

        resp = client.patch(f'/transactions/{tx_id}/processed', json={'processed': True},
                            headers=auth_headers(cashier))
        assert resp.status_code == 200
        assert resp.json['processedBy'] == cashier.utorid
        assert resp.json['redeemed'] == 30
        assert _points(regular) == 70

        resp = client.patch(f'/transactions/{tx_id}/processed', json={'processed': True},
                            headers=auth_headers(cashier))
        assert resp.status_code == 400

    def test_processed_must_be_true(self, client, cashier, regular):
        _purchase(client, cashier, regular)
        tx_id = client.post('/users/me/transactions', json={'type': 'redemption', 'amount': 1},
                            headers=auth_headers(regular)).json['id']

        resp = client.patch(f'/transactions/{tx_id}/processed', json={'processed': False},
                            headers=auth_headers(cashier))
        assert resp.status_code == 400

    def test_transfer(self, client, cashier, regular, other_regular):
        _purchase(client, cashier, regular)

        resp = client.post(
            f'/users/{other_regular.id}/transactions',
            json={'type': 'transfer', 'amount': 40, 'remark': 'lunch'},
            headers=auth_headers(regular),
        )

        assert resp.status_code == 201
        assert resp.json['sender'] == regular.utorid
        assert resp.json['recipient'] == other_regular.utorid
        assert resp.json['sent'] == 40
        assert _points(regular) == 60
        assert _points(other_regular) == 40

    def test_transfer_validation(self, client, regular, other_regular):
        headers = auth_headers(regular)
        path = f'/users/{other_regular.id}/transactions'

        assert client.post(path, json={'type': 'transfer', 'amount': 0}, headers=headers).status_code == 400
        assert client.post(path, json={'type': 'transfer', 'amount': 1.5}, headers=headers).status_code == 400
        assert client.post(path, json={'type': 'redemption', 'amount': 1}, headers=headers).status_code == 400
        assert client.post(path, json={'type': 'transfer', 'amount': 1}, headers=headers).status_code == 400
