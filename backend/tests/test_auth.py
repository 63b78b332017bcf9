"""
Authentication tests.

Verifies:
- Login issues a bearer token and records last_login
- Bad credentials and malformed tokens return 401
- Reset tokens are single-use, expire, and are bound to one utorid
- Issuing a new reset token expires the previous one
"""

from datetime import timedelta

from conftest import PASSWORD, auth_headers
from loyalty.extensions import db
from loyalty.models import PasswordReset, User
from loyalty.time_utils import utcnow


NEW_PASSWORD = "Changed456$"


def _login(client, utorid, password):
    return client.post('/auth/tokens', json={'utorid': utorid, 'password': password})


class TestLogin:
    def test_login_returns_token(self, client, regular):
        resp = _login(client, regular.utorid, PASSWORD)

        assert resp.status_code == 200
        assert resp.json['token']
        assert resp.json['expiresAt'].endswith('Z')
        assert db.session.get(User, regular.id).last_login is not None

    def test_token_authenticates_requests(self, client, regular):
        token = _login(client, regular.utorid, PASSWORD).json['token']

        resp = client.get('/users/me', headers={'Authorization': f'Bearer {token}'})

        assert resp.status_code == 200
        assert resp.json['utorid'] == regular.utorid

    def test_wrong_password(self, client, regular):
        resp = _login(client, regular.utorid, 'Wrong123!')
        assert resp.status_code == 401
        assert resp.json == {'error': 'Invalid credentials.'}

    def test_unknown_user(self, client, db_session):
        assert _login(client, 'ghost123', PASSWORD).status_code == 401

    def test_extra_field_rejected(self, client, regular):
        resp = client.post(
            '/auth/tokens',
            json={'utorid': regular.utorid, 'password': PASSWORD, 'role': 'superuser'},
        )
        assert resp.status_code == 400

    def test_missing_header(self, client, db_session):
        assert client.get('/users/me').status_code == 401

    def test_garbage_token(self, client, db_session):
        resp = client.get('/users/me', headers={'Authorization': 'Bearer not-a-jwt'})
        assert resp.status_code == 401

    def test_role_comes_from_database(self, client, regular):
        headers = auth_headers(regular)
        regular.role = 'manager'
        db.session.commit()

        assert client.get('/users', headers=headers).status_code == 200


class TestPasswordReset:
    def _request(self, client, user):
        return client.post('/auth/resets', json={'utorid': user.utorid, 'email': user.email})

    def test_full_lifecycle(self, client, regular):
        resp = self._request(client, regular)
        assert resp.status_code == 202
        token = resp.json['resetToken']

        resp = client.post(f'/auth/resets/{token}', json={'utorid': regular.utorid, 'password': NEW_PASSWORD})
        assert resp.status_code == 200

        assert _login(client, regular.utorid, NEW_PASSWORD).status_code == 200
        assert _login(client, regular.utorid, PASSWORD).status_code == 401

    def test_token_is_single_use(self, client, regular):
        token = self._request(client, regular).json['resetToken']
        body = {'utorid': regular.utorid, 'password': NEW_PASSWORD}

        assert client.post(f'/auth/resets/{token}', json=body).status_code == 200
        assert client.post(f'/auth/resets/{token}', json=body).status_code == 410

    def test_new_token_expires_previous(self, client, regular):
        first = self._request(client, regular).json['resetToken']
        second = self._request(client, regular).json['resetToken']
        body = {'utorid': regular.utorid, 'password': NEW_PASSWORD}

        assert client.post(f'/auth/resets/{first}', json=body).status_code == 410
        assert client.post(f'/auth/resets/{second}', json=body).status_code == 200

    def test_expired_token(self, client, regular):
        token = self._request(client, regular).json['resetToken']
        reset = db.session.query(PasswordReset).filter_by(token=token).one()
        reset.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        resp = client.post(f'/auth/resets/{token}', json={'utorid': regular.utorid, 'password': NEW_PASSWORD})
        assert resp.status_code == 410

    def test_token_bound_to_utorid(self, client, regular, other_regular):
        token = self._request(client, regular).json['resetToken']

        resp = client.post(f'/auth/resets/{token}', json={'utorid': other_regular.utorid, 'password': NEW_PASSWORD})
        assert resp.status_code == 401

        # Still usable by its owner
        resp = client.post(f'/auth/resets/{token}', json={'utorid': regular.utorid, 'password': NEW_PASSWORD})
        assert resp.status_code == 200

    def test_unknown_token(self, client, regular):
        resp = client.post('/auth/resets/deadbeef', json={'utorid': regular.utorid, 'password': NEW_PASSWORD})
        assert resp.status_code == 404

    def test_weak_password_rejected(self, client, regular):
        token = self._request(client, regular).json['resetToken']
        resp = client.post(f'/auth/resets/{token}', json={'utorid': regular.utorid, 'password': 'weak'})
        assert resp.status_code == 400

    def test_email_must_match(self, client, regular):
        resp = client.post('/auth/resets', json={'utorid': regular.utorid, 'email': 'other@mail.utoronto.ca'})
        assert resp.status_code == 404
