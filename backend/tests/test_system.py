"""
System endpoint and error-shape tests.
"""


def test_health_reports_database(client, db_session, regular):
    resp = client.get('/health')

    assert resp.status_code == 200
    assert resp.json['status'] == 'healthy'
    assert resp.json['database']['details']['users'] == 1


def test_unknown_route_is_json(client, db_session):
    resp = client.get('/no-such-route')

    assert resp.status_code == 404
    assert resp.json == {'error': 'Not Found'}


def test_cors_allows_configured_origin(client, db_session):
    resp = client.get('/health', headers={'Origin': 'http://localhost:5173'})
    assert resp.headers['Access-Control-Allow-Origin'] == 'http://localhost:5173'

    resp = client.get('/health', headers={'Origin': 'http://evil.example'})
    assert 'Access-Control-Allow-Origin' not in resp.headers
