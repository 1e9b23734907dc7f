# geofeed/api/auth/test_auth_routes.py


def test_session_start_publishes_user(client, identity, documents, kv_store):
    identity.seed('alice', display_name='앨리스')
    documents.seed('users', 'alice', {'email': 'alice@example.com', 'displayName': '앨리스'})

    response = client.post('/api/auth/session', json={'id_token': 'alice'})

    assert response.status_code == 200
    body = response.get_json()
    assert body['user_id'] == 'alice'
    assert body['user']['display_name'] == '앨리스'
    assert kv_store.get('userData')['uid'] == 'alice'


def test_session_start_requires_token(client):
    response = client.post('/api/auth/session', json={})
    assert response.status_code == 400
    assert response.get_json()['error_code'] == 'VALIDATION_ERROR'


def test_invalid_token_is_rejected(client):
    response = client.post('/api/auth/session', json={'id_token': 'unknown'})
    assert response.status_code == 401
    assert response.get_json()['error_code'] == 'NOT_AUTHENTICATED'


def test_refresh_with_other_users_token_is_rejected(client, sign_in, identity):
    sign_in('alice')
    identity.seed('bob')
    response = client.post('/api/auth/token/refresh', json={'id_token': 'bob'})
    assert response.status_code == 401


def test_token_refresh_reconciles_again(client, sign_in, documents):
    sign_in('alice')
    documents.delete_document('users', 'alice')

    response = client.post('/api/auth/token/refresh', json={'id_token': 'alice'})

    assert response.status_code == 200
    # 토큰 갱신 이벤트도 재조정을 거치므로 사라진 프로필 문서가 다시 만들어진다
    assert documents.get_document('users', 'alice')['displayName'] == '앨리스'


def test_logout_clears_session(client, sign_in, services, kv_store):
    sign_in('alice')
    services['session'].track_liked_post('p1', True)

    response = client.post('/api/auth/logout')

    assert response.status_code == 204
    assert services['session'].is_authenticated is False
    assert services['session'].liked_override('p1') is None
    assert kv_store.get('userData') is None
