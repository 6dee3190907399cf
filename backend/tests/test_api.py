import time

from bingo import db
from bingo.models import Game


def _create(client, headers, **body):
    return client.post('/api/games/', json=body, headers=headers)


def _reload(game_id):
    db.session.expire_all()
    return db.session.get(Game, game_id)


def test_register_login_and_me(client):
    res = client.post('/auth/register', json={'username': 'dora', 'password': 'secret1'})
    assert res.status_code == 201
    token = res.get_json()['access_token']
    res = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert res.status_code == 200
    assert res.get_json()['user']['username'] == 'dora'

    res = client.post('/auth/login', json={'username': 'dora', 'password': 'wrong'})
    assert res.status_code == 401
    res = client.post('/auth/login', json={'username': 'dora', 'password': 'secret1'})
    assert res.status_code == 200
    assert res.get_json()['access_token']


def test_register_validation(client, alice):
    assert client.post('/auth/register', json={'username': 'al', 'password': 'secret1'}).status_code == 400
    assert client.post('/auth/register', json={'username': 'alex', 'password': '123'}).status_code == 400
    assert client.post('/auth/register', json={'username': 'alice', 'password': 'secret1'}).status_code == 400


def test_requires_bearer_token(client):
    res = client.get('/api/games/')
    assert res.status_code == 401
    res = client.get('/api/games/', headers={'Authorization': 'Bearer not-a-token'})
    assert res.status_code == 401


def test_inactive_user_token_rejected(client, make_user, auth_headers):
    ghost = make_user('ghost', active=False)
    assert client.get('/auth/me', headers=auth_headers(ghost)).status_code == 401


def test_create_game(client, alice, bob, auth_headers):
    res = _create(client, auth_headers(alice), opponent_id=bob.id)
    assert res.status_code == 201
    game = res.get_json()['game']
    assert game['status'] == 'pending'
    assert game['first']['username'] == 'alice'
    assert game['second']['username'] == 'bob'
    assert game['settings'] == {'win_pattern': 'lines', 'required_lines': 5, 'max_number': 25, 'shared_board': True}
    assert len(game['board']) == 5 and game['board'][2][2] == 'FREE'


def test_create_validation(client, alice, auth_headers):
    headers = auth_headers(alice)
    assert _create(client, headers).status_code == 400
    assert _create(client, headers, opponent_id=999).status_code == 404
    assert _create(client, headers, game_type='solo', win_pattern='zigzag').status_code == 400
    assert _create(client, headers, game_type='solo', max_number=10).status_code == 400


def test_create_solo(client, alice, auth_headers):
    res = _create(client, auth_headers(alice), game_type='solo')
    assert res.status_code == 201
    game = res.get_json()['game']
    assert game['game_type'] == 'solo'
    assert game['first']['id'] == game['second']['id'] == alice.id


def test_scenario_e_duplicate_pair_conflicts(client, alice, bob, auth_headers):
    assert _create(client, auth_headers(alice), opponent_id=bob.id).status_code == 201
    res = _create(client, auth_headers(bob), opponent_id=alice.id)
    assert res.status_code == 409
    assert res.get_json()['code'] == 'conflict'


def test_accept_and_state(client, alice, bob, carol, auth_headers):
    game = _create(client, auth_headers(alice), opponent_id=bob.id).get_json()['game']
    # outsiders can neither see nor accept
    assert client.get(f"/api/games/{game['id']}", headers=auth_headers(carol)).status_code == 403
    assert client.post(f"/api/games/{game['id']}/accept", headers=auth_headers(carol)).status_code == 403

    res = client.post(f"/api/games/{game['room_code']}/accept", headers=auth_headers(bob))
    assert res.status_code == 200
    accepted = res.get_json()['game']
    assert accepted['status'] == 'active'
    assert accepted['started_at'] is not None

    res = client.get(f"/api/games/{game['id']}", headers=auth_headers(alice))
    assert res.get_json()['game']['status'] == 'active'
    # joining again is not allowed
    assert client.post(f"/api/games/{game['id']}/join", headers=auth_headers(bob)).status_code == 400


def test_unknown_game_is_404(client, alice, auth_headers):
    assert client.get('/api/games/NOPE42', headers=auth_headers(alice)).status_code == 404


def test_decline_and_cancel(client, alice, bob, carol, auth_headers):
    game = _create(client, auth_headers(alice), opponent_id=bob.id).get_json()['game']
    assert client.post(f"/api/games/{game['id']}/decline", headers=auth_headers(alice)).status_code == 403
    res = client.post(f"/api/games/{game['id']}/decline", headers=auth_headers(bob))
    assert res.status_code == 200
    assert res.get_json()['game']['status'] == 'cancelled'

    other = _create(client, auth_headers(alice), opponent_id=carol.id).get_json()['game']
    assert client.post(f"/api/games/{other['id']}/cancel", headers=auth_headers(carol)).status_code == 403
    res = client.post(f"/api/games/{other['id']}/cancel", headers=auth_headers(alice))
    assert res.get_json()['game']['status'] == 'cancelled'
    assert client.post(f"/api/games/{other['id']}/cancel", headers=auth_headers(alice)).status_code == 400


def test_call_number_flow(client, alice, bob, auth_headers, fixed_boards):
    game = _create(client, auth_headers(alice), opponent_id=bob.id, win_pattern='line').get_json()['game']
    gid = game['id']
    client.post(f'/api/games/{gid}/accept', headers=auth_headers(bob))

    res = client.post(f'/api/games/{gid}/call-number', json={'number': 7}, headers=auth_headers(alice))
    assert res.status_code == 200
    body = res.get_json()
    assert [c['number'] for c in body['game']['called_numbers']] == [7]
    assert body['game']['current_turn'] == 'second'
    assert body['winner'] is None

    # retry of an acknowledged call is refused without side effects
    res = client.post(f'/api/games/{gid}/call-number', json={'number': 7}, headers=auth_headers(alice))
    assert res.status_code == 409
    assert res.get_json()['code'] == 'duplicate_number'
    # wrong turn
    res = client.post(f'/api/games/{gid}/call-number', json={'number': 8}, headers=auth_headers(alice))
    assert res.status_code == 403
    # out of range
    res = client.post(f'/api/games/{gid}/call-number', json={'number': 26}, headers=auth_headers(bob))
    assert res.status_code == 400

    stored = _reload(gid)
    assert stored.called == [7]
    assert stored.current_turn == 'second'


def test_call_number_until_win(client, alice, bob, auth_headers, fixed_boards):
    game = _create(client, auth_headers(alice), opponent_id=bob.id, win_pattern='line').get_json()['game']
    gid = game['id']
    client.post(f'/api/games/{gid}/accept', headers=auth_headers(bob))
    calls = [(alice, 11), (bob, 1), (alice, 12), (bob, 2), (alice, 14), (bob, 3), (alice, 15)]
    for user, n in calls:
        res = client.post(f'/api/games/{gid}/call-number', json={'number': n}, headers=auth_headers(user))
        assert res.status_code == 200
    body = res.get_json()
    assert body['winner']['username'] == 'alice'
    assert body['game']['status'] == 'completed'
    assert body['game']['end_reason'] == 'won'
    assert body['game']['duration_seconds'] is not None

    res = client.post(f'/api/games/{gid}/call-number', json={'number': 4}, headers=auth_headers(bob))
    assert res.status_code == 400


def test_scenario_d_expired_invitation(client, alice, bob, auth_headers):
    game = _create(client, auth_headers(alice), opponent_id=bob.id).get_json()['game']
    stored = _reload(game['id'])
    stored.invitation_expires_at = time.time() - 1
    db.session.commit()

    res = client.get(f"/api/games/{game['id']}", headers=auth_headers(alice))
    assert res.get_json()['game']['status'] == 'cancelled'
    assert res.get_json()['game']['end_reason'] == 'expired'

    res = client.post(f"/api/games/{game['id']}/accept", headers=auth_headers(bob))
    assert res.status_code == 400
    assert res.get_json()['code'] == 'expired'

    # the pair is free for a new invitation
    assert _create(client, auth_headers(bob), opponent_id=alice.id).status_code == 201


def test_list_games(client, alice, bob, carol, auth_headers):
    _create(client, auth_headers(alice), opponent_id=bob.id)
    other = _create(client, auth_headers(carol), opponent_id=alice.id).get_json()['game']
    client.post(f"/api/games/{other['id']}/decline", headers=auth_headers(alice))

    res = client.get('/api/games/', headers=auth_headers(alice))
    body = res.get_json()
    assert body['total'] == 2
    assert body['total_pages'] == 1
    res = client.get('/api/games/?status=cancelled', headers=auth_headers(alice))
    assert [g['id'] for g in res.get_json()['games']] == [other['id']]
    res = client.get('/api/games/?limit=1&page=2', headers=auth_headers(alice))
    assert len(res.get_json()['games']) == 1
    assert client.get('/api/games/?status=weird', headers=auth_headers(alice)).status_code == 400
    assert client.get('/api/games/', headers=auth_headers(bob)).get_json()['total'] == 1


def test_db_reset_command(flask_app):
    runner = flask_app.test_cli_runner()
    result = runner.invoke(args=['db-reset'])
    assert 'reset and seeded' in result.output
    from bingo.models import User
    assert User.query.count() == 3


def test_create_rejects_out_of_range_numbers(client, alice, bob, auth_headers):
    headers = auth_headers(alice)
    bodies = [
        {'opponent_id': bob.id, 'max_number': 2 ** 70},
        {'opponent_id': bob.id, 'max_number': 76},
        {'opponent_id': 2 ** 70},
        {'opponent_id': -1},
        {'opponent_id': bob.id, 'required_lines': 2 ** 70},
        {'opponent_id': bob.id, 'win_pattern': 'corners', 'required_lines': 0},
    ]
    for body in bodies:
        res = _create(client, headers, **body)
        assert res.status_code == 400, body
        assert res.get_json()['code'] == 'invalid_action'
    assert Game.query.count() == 0


def test_create_accepts_widest_number_range(client, alice, bob, auth_headers):
    res = _create(client, auth_headers(alice), opponent_id=bob.id, max_number=75)
    assert res.status_code == 201
    assert res.get_json()['game']['settings']['max_number'] == 75


def test_create_rejects_self_invite(client, alice, auth_headers):
    res = _create(client, auth_headers(alice), opponent_id=alice.id)
    assert res.status_code == 400
    assert res.get_json()['error'] == 'You cannot invite yourself'
    assert Game.query.count() == 0


def test_shared_board_must_be_a_boolean(client, alice, bob, auth_headers):
    res = _create(client, auth_headers(alice), opponent_id=bob.id, shared_board='false')
    assert res.status_code == 400
    res = _create(client, auth_headers(alice), opponent_id=bob.id, shared_board=False)
    assert res.status_code == 201
    assert res.get_json()['game']['settings']['shared_board'] is False


def test_huge_numeric_reference_is_not_found(client, alice, auth_headers):
    assert client.get('/api/games/' + '9' * 30, headers=auth_headers(alice)).status_code == 404
