"""
Promotion catalog tests.

Verifies:
- Create validation (types, time window, numeric fields)
- Role-aware listing and lookup
- Field freezing once a promotion has started or ended
- Delete only before start
- Validity window excludes its end instant
- One-time usage is recorded at most once
"""

from datetime import timedelta

import pytest

from conftest import auth_headers, iso
from loyalty.errors import BadRequest
from loyalty.extensions import db
from loyalty.models import Promotion
from loyalty.services import promotions_service
from loyalty.time_utils import utcnow


def _payload(**overrides):
    now = utcnow()
    body = {
        'name': 'Spring bonus',
        'description': 'Extra points in spring',
        'type': 'automatic',
        'startTime': iso(now + timedelta(days=1)),
        'endTime': iso(now + timedelta(days=10)),
        'minSpending': 20,
        'rate': 0.02,
        'points': 5,
    }
    body.update(overrides)
    return body


class TestCreate:
    def test_manager_creates(self, client, manager):
        resp = client.post('/promotions', json=_payload(), headers=auth_headers(manager))

        assert resp.status_code == 201
        assert resp.json['name'] == 'Spring bonus'
        assert resp.json['minSpending'] == 20.0
        assert resp.json['startTime'].endswith('Z')

    def test_cashier_forbidden(self, client, cashier):
        assert client.post('/promotions', json=_payload(), headers=auth_headers(cashier)).status_code == 403

    def test_invalid_payloads(self, client, manager):
        headers = auth_headers(manager)
        now = utcnow()

        bad = [
            _payload(type='weekly'),
            _payload(endTime=iso(now)),
            _payload(rate=-0.5),
            _payload(points=2.5),
            _payload(startTime='not-a-date'),
            _payload(extra='nope'),
        ]
        for body in bad:
            assert client.post('/promotions', json=body, headers=headers).status_code == 400, body

        missing = _payload()
        del missing['description']
        assert client.post('/promotions', json=missing, headers=headers).status_code == 400


class TestListing:
    def test_regular_sees_only_active_without_start_time(self, client, regular, make_promotion):
        active = make_promotion('Active')
        make_promotion('Future', start=utcnow() + timedelta(days=1), end=utcnow() + timedelta(days=2))
        make_promotion('Past', start=utcnow() - timedelta(days=5), end=utcnow() - timedelta(days=1))

        resp = client.get('/promotions', headers=auth_headers(regular))

        assert resp.status_code == 200
        assert resp.json['count'] == 1
        assert resp.json['results'][0]['id'] == active.id
        assert 'startTime' not in resp.json['results'][0]

    def test_used_one_time_promotion_hidden(self, client, engine, cashier, regular, make_promotion):
        promo = make_promotion('Welcome', 'one-time', points=50)
        engine.create_purchase(cashier.id, regular.utorid, 10.0, [promo.id])

        resp = client.get('/promotions', headers=auth_headers(regular))
        assert resp.json['count'] == 0

    def test_manager_filters(self, client, manager, make_promotion):
        make_promotion('Active')
        future = make_promotion('Future', start=utcnow() + timedelta(days=1), end=utcnow() + timedelta(days=2))
        headers = auth_headers(manager)

        resp = client.get('/promotions?started=false', headers=headers)
        assert [p['id'] for p in resp.json['results']] == [future.id]

        resp = client.get('/promotions?started=true&ended=false', headers=headers)
        assert resp.status_code == 400

    def test_regular_cannot_get_inactive(self, client, regular, manager, make_promotion):
        future = make_promotion('Future', start=utcnow() + timedelta(days=1), end=utcnow() + timedelta(days=2))

        assert client.get(f'/promotions/{future.id}', headers=auth_headers(regular)).status_code == 404
        assert client.get(f'/promotions/{future.id}', headers=auth_headers(manager)).status_code == 200


class TestUpdateAndDelete:
    def test_update_before_start(self, client, manager, make_promotion):
        promo = make_promotion('Future', start=utcnow() + timedelta(days=1), end=utcnow() + timedelta(days=2))

        resp = client.patch(f'/promotions/{promo.id}', json={'name': 'Renamed', 'points': 7}, headers=auth_headers(manager))

        assert resp.status_code == 200
        assert resp.json['name'] == 'Renamed'
        assert resp.json['points'] == 7

    def test_only_end_time_changes_after_start(self, client, manager, make_promotion):
        promo = make_promotion('Running')
        headers = auth_headers(manager)

        resp = client.patch(f'/promotions/{promo.id}', json={'name': 'Renamed'}, headers=headers)
        assert resp.status_code == 400

        new_end = utcnow() + timedelta(days=30)
        resp = client.patch(f'/promotions/{promo.id}', json={'endTime': iso(new_end)}, headers=headers)
        assert resp.status_code == 200

    def test_nothing_changes_after_end(self, client, manager, make_promotion):
        promo = make_promotion('Over', start=utcnow() - timedelta(days=5), end=utcnow() - timedelta(days=1))

        resp = client.patch(
            f'/promotions/{promo.id}',
            json={'endTime': iso(utcnow() + timedelta(days=3))},
            headers=auth_headers(manager),
        )
        assert resp.status_code == 400

    def test_times_in_past_rejected(self, client, manager, make_promotion):
        promo = make_promotion('Future', start=utcnow() + timedelta(days=1), end=utcnow() + timedelta(days=2))

        resp = client.patch(
            f'/promotions/{promo.id}',
            json={'startTime': iso(utcnow() - timedelta(days=1))},
            headers=auth_headers(manager),
        )
        assert resp.status_code == 400

    def test_delete_before_start(self, client, manager, make_promotion):
        promo = make_promotion('Future', start=utcnow() + timedelta(days=1), end=utcnow() + timedelta(days=2))

        resp = client.delete(f'/promotions/{promo.id}', headers=auth_headers(manager))

        assert resp.status_code == 204
        assert db.session.get(Promotion, promo.id) is None

    def test_delete_after_start_forbidden(self, client, manager, make_promotion):
        promo = make_promotion('Running')
        assert client.delete(f'/promotions/{promo.id}', headers=auth_headers(manager)).status_code == 403

    def test_delete_unknown(self, client, manager):
        assert client.delete('/promotions/424242', headers=auth_headers(manager)).status_code == 404


class TestValidityWindow:
    def test_end_instant_is_outside_window(self, db_session, make_promotion):
        now = utcnow()
        promo = make_promotion('Ending', start=now - timedelta(days=1), end=now)

        assert promo.is_active(now - timedelta(seconds=1)) is True
        assert promo.is_active(now) is False
        assert promotions_service.list_active_automatic(now) == []
        assert promotions_service.list_active_automatic(now - timedelta(seconds=1)) == [promo]

    def test_start_instant_is_inside_window(self, db_session, make_promotion):
        now = utcnow()
        promo = make_promotion('Starting', start=now, end=now + timedelta(days=1))

        assert promo.is_active(now) is True
        assert promotions_service.list_active(now) == [promo]

    def test_purchase_rejects_promotion_at_its_end(self, engine, cashier, regular, make_promotion):
        now = utcnow()
        promo = make_promotion('Ending', 'one-time', start=now - timedelta(days=1), end=now, points=50)

        with pytest.raises(BadRequest, match="not active"):
            engine.create_purchase(cashier.id, regular.utorid, 10.0, [promo.id])


class TestUsageTracking:
    def test_mark_used_refuses_second_usage(self, db_session, regular, make_promotion):
        promo = make_promotion('Welcome', 'one-time', points=50)
        promotions_service.mark_used(regular, [promo])
        db.session.commit()

        with pytest.raises(BadRequest, match="already been used"):
            promotions_service.mark_used(regular, [promo])
        db.session.rollback()

        assert promotions_service.has_user_used(regular.id, promo.id) is True
        assert promo.used_by.count() == 1

    def test_mark_used_ignores_automatic(self, db_session, regular, make_promotion):
        promo = make_promotion('Always')

        promotions_service.mark_used(regular, [promo])
        promotions_service.mark_used(regular, [promo])
        db.session.commit()

        assert promotions_service.has_user_used(regular.id, promo.id) is False
