"""
User management tests.

Verifies:
- Registration with activation token, duplicate detection, field validation
- Self-service profile and password updates
- Manager/superuser updates follow the role ladder
- Cashiers get a reduced view of other users
"""

from conftest import PASSWORD, auth_headers
from loyalty.extensions import db
from loyalty.models import User


class TestRegistration:
    def _register(self, client, headers, utorid='newuser1', email='newuser1@mail.utoronto.ca'):
        return client.post(
            '/users',
            json={'utorid': utorid, 'name': 'New User', 'email': email},
            headers=headers,
        )

    def test_cashier_registers_user(self, client, cashier):
        resp = self._register(client, auth_headers(cashier))

        assert resp.status_code == 201
        assert resp.json['verified'] is False
        assert resp.json['resetToken']
        assert resp.json['expiresAt'].endswith('Z')

        user = db.session.query(User).filter_by(utorid='newuser1').one()
        assert user.role == 'regular'
        assert user.points == 0

    def test_activation_through_reset(self, client, cashier):
        token = self._register(client, auth_headers(cashier)).json['resetToken']

        resp = client.post(f'/auth/resets/{token}', json={'utorid': 'newuser1', 'password': 'Fresh123!x'})
        assert resp.status_code == 200

        resp = client.post('/auth/tokens', json={'utorid': 'newuser1', 'password': 'Fresh123!x'})
        assert resp.status_code == 200

    def test_duplicate_utorid(self, client, cashier):
        headers = auth_headers(cashier)
        assert self._register(client, headers).status_code == 201
        resp = self._register(client, headers, email='another@mail.utoronto.ca')
        assert resp.status_code == 409

    def test_duplicate_email(self, client, cashier, regular):
        resp = self._register(client, auth_headers(cashier), email=regular.email)
        assert resp.status_code == 409

    def test_invalid_fields(self, client, cashier):
        headers = auth_headers(cashier)
        assert self._register(client, headers, utorid='bad!').status_code == 400
        assert self._register(client, headers, email='someone@gmail.com').status_code == 400

    def test_regular_cannot_register(self, client, regular):
        assert self._register(client, auth_headers(regular)).status_code == 403


class TestSelfService:
    def test_get_me_lists_unused_one_time_promotions(self, client, regular, make_promotion):
        promo = make_promotion('Welcome', 'one-time', points=50)
        make_promotion('Always', points=5)

        resp = client.get('/users/me', headers=auth_headers(regular))

        assert resp.status_code == 200
        assert [p['id'] for p in resp.json['promotions']] == [promo.id]

    def test_update_profile(self, client, regular):
        resp = client.patch(
            '/users/me',
            json={'name': 'Renamed', 'birthday': '2000-02-29'},
            headers=auth_headers(regular),
        )

        assert resp.status_code == 200
        assert resp.json['name'] == 'Renamed'
        assert resp.json['birthday'] == '2000-02-29'

    def test_update_profile_validation(self, client, regular):
        headers = auth_headers(regular)
        assert client.patch('/users/me', json={}, headers=headers).status_code == 400
        assert client.patch('/users/me', json={'birthday': '2001-02-29'}, headers=headers).status_code == 400
        assert client.patch('/users/me', json={'role': 'manager'}, headers=headers).status_code == 400

    def test_update_email_conflict(self, client, regular, other_regular):
        resp = client.patch('/users/me', json={'email': other_regular.email}, headers=auth_headers(regular))
        assert resp.status_code == 409

    def test_change_password(self, client, regular):
        headers = auth_headers(regular)

        resp = client.patch('/users/me/password', json={'old': 'Nope123!', 'new': 'Better456$'}, headers=headers)
        assert resp.status_code == 403

        resp = client.patch('/users/me/password', json={'old': PASSWORD, 'new': 'Better456$'}, headers=headers)
        assert resp.status_code == 200

        resp = client.post('/auth/tokens', json={'utorid': regular.utorid, 'password': 'Better456$'})
        assert resp.status_code == 200


class TestManagement:
    def test_manager_lists_with_filters(self, client, manager, cashier, regular, other_regular):
        headers = auth_headers(manager)

        resp = client.get('/users?role=regular', headers=headers)
        assert resp.status_code == 200
        assert resp.json['count'] == 2
        assert {u['utorid'] for u in resp.json['results']} == {regular.utorid, other_regular.utorid}

        resp = client.get('/users?limit=1&page=2', headers=headers)
        assert resp.json['count'] == 4
        assert len(resp.json['results']) == 1

    def test_list_rejects_bad_query(self, client, manager):
        headers = auth_headers(manager)
        assert client.get('/users?role=king', headers=headers).status_code == 400
        assert client.get('/users?page=0', headers=headers).status_code == 400

    def test_cashier_gets_reduced_view(self, client, cashier, regular):
        resp = client.get(f'/users/{regular.id}', headers=auth_headers(cashier))

        assert resp.status_code == 200
        assert 'email' not in resp.json
        assert resp.json['utorid'] == regular.utorid

    def test_manager_sees_full_view(self, client, manager, regular):
        resp = client.get(f'/users/{regular.id}', headers=auth_headers(manager))
        assert resp.json['email'] == regular.email

    def test_unknown_user(self, client, manager):
        assert client.get('/users/9999', headers=auth_headers(manager)).status_code == 404

    def test_manager_cannot_promote_to_manager(self, client, manager, regular):
        resp = client.patch(f'/users/{regular.id}', json={'role': 'manager'}, headers=auth_headers(manager))
        assert resp.status_code == 403
        assert db.session.get(User, regular.id).role == 'regular'

    def test_superuser_can_promote_to_manager(self, client, superuser, regular):
        resp = client.patch(f'/users/{regular.id}', json={'role': 'manager'}, headers=auth_headers(superuser))

        assert resp.status_code == 200
        assert resp.json['role'] == 'manager'
        assert 'email' not in resp.json

    def test_promotion_to_cashier_clears_suspicious(self, client, manager, make_user):
        flagged = make_user('flagged1', suspicious=True)

        resp = client.patch(f'/users/{flagged.id}', json={'role': 'cashier'}, headers=auth_headers(manager))

        assert resp.status_code == 200
        assert db.session.get(User, flagged.id).suspicious is False

    def test_verified_only_turns_on(self, client, manager, make_user):
        pending = make_user('pending1', verified=False)
        headers = auth_headers(manager)

        assert client.patch(f'/users/{pending.id}', json={'verified': False}, headers=headers).status_code == 400

        resp = client.patch(f'/users/{pending.id}', json={'verified': True}, headers=headers)
        assert resp.status_code == 200
        assert resp.json['verified'] is True

    def test_flag_suspicious(self, client, manager, regular):
        resp = client.patch(f'/users/{regular.id}', json={'suspicious': True}, headers=auth_headers(manager))
        assert resp.status_code == 200
        assert resp.json['suspicious'] is True
