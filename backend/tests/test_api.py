API = '/functions/v1'


def test_login_creates_user_and_token(client):
    res = client.post(f'{API}/auth-login', json={'username': '  alice  '})
    assert res.status_code == 200
    data = res.get_json()
    assert data['token']
    assert data['user']['username'] == 'alice'
    assert data['user']['total_wins'] == 0

    again = client.post(f'{API}/auth-login', json={'username': 'alice'}).get_json()
    assert again['user']['id'] == data['user']['id']
    assert again['token'] != data['token']


def test_login_validates_username(client):
    for bad in [None, '', 'ab', 'x' * 21, 42]:
        res = client.post(f'{API}/auth-login', json={'username': bad})
        assert res.status_code == 400
        assert 'error' in res.get_json()


def test_endpoints_require_token(client):
    for method, path in [
        ('get', 'game-current-session'),
        ('post', 'game-join-session'),
        ('post', 'game-select-number'),
        ('post', 'game-leave-session'),
        ('get', 'game-my-session'),
        ('get', 'game-leaderboard'),
        ('post', 'auth-logout'),
    ]:
        res = getattr(client, method)(f'{API}/{path}', headers={'Authorization': 'Bearer nope'})
        assert res.status_code == 401
        assert 'token' in res.get_json()['error']


def test_logout_revokes_token(client, login):
    headers, _ = login('alice')
    assert client.get(f'{API}/game-current-session', headers=headers).status_code == 200

    assert client.post(f'{API}/auth-logout', headers=headers).status_code == 200
    assert client.get(f'{API}/game-current-session', headers=headers).status_code == 401


def test_each_request_acts_as_its_own_token(client, login):
    alice, _ = login('alice')
    bobby, bobby_data = login('bobby')

    client.post(f'{API}/game-join-session', headers=alice)
    res = client.post(f'{API}/game-join-session', headers=bobby)
    assert res.get_json()['participant']['is_starter'] is False
    assert res.get_json()['session']['current_players'] == 2

    mine = client.get(f'{API}/game-my-session', headers=bobby).get_json()
    assert [p['username'] for p in mine['playersInSession']] == ['alice', 'bobby']
    assert mine['participant']['user_id'] == bobby_data['user']['id']


def test_full_round_over_http(client, login, clock):
    alice, alice_data = login('alice')
    bobby, _ = login('bobby')

    assert client.get(f'{API}/game-current-session', headers=alice).get_json() == {'waitingForPlayers': True}

    res = client.post(f'{API}/game-join-session', headers=alice)
    assert res.status_code == 200
    assert res.get_json()['success'] is True
    assert res.get_json()['participant']['is_starter'] is True
    assert client.post(f'{API}/game-join-session', headers=bobby).status_code == 200

    state = client.get(f'{API}/game-current-session', headers=alice).get_json()
    assert state['session']['status'] == 'active'
    assert state['session']['current_players'] == 2
    assert state['timeRemaining'] == 60
    assert [p['username'] for p in state['playersList']] == ['alice', 'bobby']

    res = client.post(f'{API}/game-select-number', headers=alice, json={'number': 4})
    assert res.status_code == 200
    assert 'message' in res.get_json()
    client.post(f'{API}/game-select-number', headers=alice, json={'number': 7})
    client.post(f'{API}/game-select-number', headers=bobby, json={'number': 1})

    mine = client.get(f'{API}/game-my-session', headers=alice).get_json()
    assert mine['participant']['chosen_number'] == 7
    assert len(mine['playersInSession']) == 2

    clock.advance(60)
    mine = client.get(f'{API}/game-my-session', headers=alice).get_json()
    assert mine['session']['status'] == 'finished'
    assert mine['winningNumber'] == 7
    assert mine['isWinner'] is True
    assert mine['winners'] == [{'user_id': alice_data['user']['id'], 'username': 'alice', 'chosen_number': 7}]

    lobby = client.get(f'{API}/game-current-session', headers=bobby).get_json()
    assert lobby['showResults'] is True
    assert lobby['totalPlayers'] == 2

    board = client.get(f'{API}/game-leaderboard?filter=daily', headers=bobby).get_json()
    assert [(r['username'], r['total_wins'], r['total_losses']) for r in board['leaderboard']] == [
        ('alice', 1, 0),
        ('bobby', 0, 1),
    ]


def test_select_number_errors(client, login):
    alice, _ = login('alice')
    res = client.post(f'{API}/game-select-number', headers=alice, json={'number': 5})
    assert res.status_code == 409
    assert res.get_json()['error'] == 'No active session'

    client.post(f'{API}/game-join-session', headers=alice)
    res = client.post(f'{API}/game-select-number', headers=alice, json={'number': 12})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Number must be between 1 and 9'

    res = client.post(f'{API}/game-select-number', headers=alice, json={})
    assert res.status_code == 400

    bobby, _ = login('bobby')
    res = client.post(f'{API}/game-select-number', headers=bobby, json={'number': 5})
    assert res.status_code == 404


def test_join_full_session_returns_error(client, login):
    for name in ['alice', 'bobby', 'carol']:
        headers, _ = login(name)
        assert client.post(f'{API}/game-join-session', headers=headers).status_code == 200

    david, _ = login('david')
    res = client.post(f'{API}/game-join-session', headers=david)
    assert res.status_code == 409
    assert res.get_json() == {'error': 'Session is full'}


def test_leave_session(client, login):
    alice, _ = login('alice')
    res = client.post(f'{API}/game-leave-session', headers=alice)
    assert res.status_code == 404

    client.post(f'{API}/game-join-session', headers=alice)
    res = client.post(f'{API}/game-leave-session', headers=alice)
    assert res.status_code == 200
    assert res.get_json() == {'success': True}
    state = client.get(f'{API}/game-current-session', headers=alice).get_json()
    assert state['session']['current_players'] == 0
    assert state['playersList'] == []


def test_leaderboard_rejects_unknown_filter(client, login):
    alice, _ = login('alice')
    res = client.get(f'{API}/game-leaderboard?filter=yearly', headers=alice)
    assert res.status_code == 400
    assert 'yearly' in res.get_json()['error']
    res = client.get(f'{API}/game-leaderboard', headers=alice)
    assert res.get_json() == {'leaderboard': []}
