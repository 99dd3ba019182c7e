"""
HTTP tests for the FastAPI app, with an in-memory database and a fake TMDB client.
"""

import hmac
import json
import hashlib
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app import Services, app, get_services
from conftest import fake_enrich
from config import Config
from modules.storage import Supporter

UUID = "0b3f1c9e-5d2a-4e7b-9f1a-2c3d4e5f6a7b"
PREFS = {"content_type": "movie", "genres": ["Action"]}


@pytest.fixture
def tmdb(movies):
    client = MagicMock()
    client.discover.return_value = movies
    client.enrich_movies.side_effect = fake_enrich
    client.get_cache_stats.return_value = {'size': 0, 'enabled': True}
    return client


@pytest.fixture
def services(db, tmdb):
    return Services(db, tmdb_client=tmdb)


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_premium(db, ip="testclient"):
    with db.session_scope() as session:
        session.add(Supporter(email='fan@example.com', ip_address=ip, transaction_id='tx-app',
                              amount=5, verified=True, unlimited_searches=True))


def sse_events(text):
    return [json.loads(line[len('data: '):]) for line in text.splitlines() if line.startswith('data: ')]


def test_health(client):
    body = client.get('/health').json()
    assert body['status'] == 'healthy'
    assert body['cache_size'] == 0


def test_options(client):
    body = client.get('/api/options').json()
    assert len(body['moods']) == 8
    assert 'Netflix' in body['streaming_services']
    assert body['share_message']


def test_visitor_sets_cookie_and_reports_quota(client):
    response = client.get('/api/visitor', params={'uuid': UUID})

    assert response.status_code == 200
    assert response.json()['visitor_uuid'] == UUID
    assert response.json()['quota']['remaining'] == 5
    assert response.cookies.get(Config.VISITOR_COOKIE) == UUID

    # The cookie is reused on the next request
    assert client.get('/api/visitor').json()['visitor_uuid'] == UUID


def test_search_limit_check_and_consume(client):
    assert client.get('/api/search-limit').json()['remaining'] == 5

    consumed = client.post('/api/search-limit', json={'mode': 'consume'}).json()
    assert consumed['remaining'] == 4
    assert consumed['message'] == 'Search recorded'

    checked = client.post('/api/search-limit', json={'mode': 'check'}).json()
    assert checked['remaining'] == 4
    assert checked['message'] == 'Credits checked'


def test_search_limit_unknown_mode(client):
    response = client.post('/api/search-limit', json={'mode': 'reset'})
    assert response.status_code == 400


def test_recommend(client):
    response = client.post('/api/recommend', json=PREFS)

    assert response.status_code == 200
    body = response.json()
    assert len(body['results']) == 5
    assert body['quota']['remaining'] == 4


def test_recommend_validation_error(client):
    response = client.post('/api/recommend', json={"content_type": "movie"})

    assert response.status_code == 400
    assert response.json()['error'] == 'At least one genre or mood is required'


def test_recommend_limit_reached(client, services):
    services.limiter.limit = 1
    client.post('/api/recommend', json=PREFS)

    response = client.post('/api/recommend', json=PREFS)

    assert response.status_code == 403
    assert response.json()['can_search'] is False
    assert response.json()['error'] == 'You have reached the limit of free searches.'


def test_limits_follow_forwarded_ip(client, services):
    services.limiter.limit = 1
    client.post('/api/recommend', json=PREFS, headers={'X-Forwarded-For': '8.8.8.8'})

    other = client.post('/api/recommend', json=PREFS, headers={'X-Forwarded-For': '8.8.4.4'})
    assert other.status_code == 200


def test_recommend_tmdb_failure(client, tmdb):
    from modules.tmdb_client import TMDBAPIError
    tmdb.discover.side_effect = TMDBAPIError('boom')

    response = client.post('/api/recommend', json=PREFS)
    assert response.status_code == 502


def test_recommend_no_results(client, tmdb):
    from modules.tmdb_client import MovieNotFoundError
    tmdb.discover.side_effect = MovieNotFoundError('No movies found matching your criteria. Try adjusting your filters.')

    response = client.post('/api/recommend', json=PREFS)
    assert response.status_code == 404


def test_recommend_without_tmdb_key(db):
    app.dependency_overrides[get_services] = lambda: Services(db)
    try:
        response = TestClient(app).post('/api/recommend', json=PREFS)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 502


def test_recommend_stream(client):
    response = client.post('/api/recommend-stream', json=PREFS)

    assert response.status_code == 200
    assert response.headers['content-type'].startswith('text/event-stream')

    events = sse_events(response.text)
    assert events[0]['type'] == 'progress'
    assert events[-1]['type'] == 'complete'
    assert len(events[-1]['results']) == 5


def test_recommend_stream_premium_perfect_match(client, db):
    make_premium(db)
    response = client.post('/api/recommend-stream', json={**PREFS, 'is_perfect_match': True})

    events = sse_events(response.text)
    assert any(e.get('step') == 4 for e in events)
    assert events[-1]['perfect_match']['movie']['title'] == 'John Wick'


def test_recommend_stream_reports_errors(client):
    events = sse_events(client.post('/api/recommend-stream', json={'content_type': 'movie'}).text)

    assert events[-1]['type'] == 'error'
    assert events[-1]['message'] == 'At least one genre or mood is required'


def test_perfect_match_endpoint(client, db, movies):
    payload = {'preferences': PREFS, 'movie': movies[0]}

    assert client.post('/api/perfect-match', json=payload).status_code == 403

    make_premium(db)
    response = client.post('/api/perfect-match', json=payload)
    assert response.status_code == 200
    assert 'Mad Max: Fury Road' in response.json()['explanation']


def test_perfect_match_requires_movie(client):
    assert client.post('/api/perfect-match', json={'preferences': PREFS}).status_code == 400


def test_checkout_and_status(client):
    checkout = client.post('/api/premium/checkout', params={'uuid': UUID}, json={'email': 'fan@example.com'})

    assert checkout.status_code == 200
    assert checkout.json()['return_url'].endswith(f'premium-success?uuid={UUID}')
    assert checkout.json()['donation_url'] == Config.DONATION_URL

    status = client.get('/api/premium/status', params={'uuid': UUID}).json()
    assert status['is_premium'] is False


def sign(body: bytes) -> str:
    return hmac.new(Config.BMC_WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


def test_webhook_unlocks_premium(client):
    client.post('/api/premium/checkout', params={'uuid': UUID}, json={'email': 'fan@example.com'})
    body = json.dumps({'data': {'supporter_email': 'fan@example.com', 'amount': 5,
                                'transaction_id': 'TXN-42'}}).encode()

    response = client.post('/webhooks/bmc', content=body, headers={'X-Signature-Sha256': sign(body)})
    assert response.status_code == 200
    assert response.json()['message'] == 'Success'

    duplicate = client.post('/webhooks/bmc', content=body, headers={'X-Signature-Sha256': sign(body)})
    assert duplicate.status_code == 200
    assert duplicate.json()['message'] == 'Transaction already processed'

    status = client.get('/api/premium/status', params={'uuid': UUID}).json()
    assert status['is_premium'] is True


def test_webhook_rejects_bad_signature(client):
    body = b'{"data": {}}'
    assert client.post('/webhooks/bmc', content=body, headers={'X-Signature-Sha256': 'nope'}).status_code == 401


def test_webhook_rejects_small_amount(client):
    body = json.dumps({'data': {'supporter_email': 'a@b.c', 'amount': 1, 'transaction_id': 'T'}}).encode()
    response = client.post('/webhooks/bmc', content=body, headers={'X-Signature-Sha256': sign(body)})

    assert response.status_code == 400
    assert 'Invalid support amount' in response.json()['error']


def test_webhook_sender_address_does_not_unlock_premium(client):
    body = json.dumps({'data': {'supporter_email': 'payer@example.com', 'amount': 5,
                                'transaction_id': 'TXN-PROXY'}}).encode()
    delivered = client.post('/webhooks/bmc', content=body,
                            headers={'X-Signature-Sha256': sign(body), 'X-Forwarded-For': '203.0.113.50'})
    assert delivered.status_code == 200

    stranger = client.get('/api/search-limit', headers={'X-Forwarded-For': '203.0.113.50'})
    assert stranger.json()['is_premium'] is False
    assert stranger.json()['remaining'] == 5
