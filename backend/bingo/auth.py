"""Bearer credentials: issue and verify signed access tokens."""

import time
from typing import Mapping, Optional

from flask import current_app, jsonify
from jose import jwt
from jose.exceptions import JWTError

from bingo import db, login_manager
from bingo.errors import AuthError
from bingo.services.presence import Identity


def issue_token(user, ttl: Optional[int] = None) -> str:
    cfg = current_app.config
    now = int(time.time())
    payload = {
        'user_id': user.id,
        'username': user.username,
        'type': 'access',
        'iat': now,
        'exp': now + int(ttl if ttl is not None else cfg.get('ACCESS_TOKEN_TTL_SEC', 86400)),
    }
    return jwt.encode(payload, cfg['JWT_SECRET_KEY'], algorithm=cfg.get('JWT_ALGORITHM', 'HS256'))


def extract_bearer(auth: Optional[Mapping] = None, headers: Optional[Mapping] = None) -> Optional[str]:
    """Token from a Socket.IO ``auth`` payload or an ``Authorization: Bearer`` header."""
    if isinstance(auth, Mapping) and auth.get('token'):
        return str(auth['token'])
    header = (headers or {}).get('Authorization') or ''
    if header.lower().startswith('bearer '):
        return header[7:].strip() or None
    return None


def verify(token: Optional[str]):
    """Resolve a token to its active user, or raise ``AuthError``."""
    from bingo.models import User

    if not token:
        raise AuthError('Authentication error: No token provided')
    cfg = current_app.config
    try:
        claims = jwt.decode(token, cfg['JWT_SECRET_KEY'], algorithms=[cfg.get('JWT_ALGORITHM', 'HS256')])
    except JWTError:
        raise AuthError('Authentication error: Invalid token')
    if claims.get('type') != 'access' or 'user_id' not in claims:
        raise AuthError('Authentication error: Invalid token')
    user = db.session.get(User, int(claims['user_id']))
    if user is None or not user.is_active:
        raise AuthError('Authentication error: User not found')
    return user


def verify_identity(token: Optional[str]) -> Identity:
    user = verify(token)
    return Identity(user_id=user.id, username=user.username, role=user.role or 'user')


@login_manager.request_loader
def load_user_from_request(request):
    token = extract_bearer(headers=request.headers)
    if not token:
        return None
    try:
        return verify(token)
    except AuthError:
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Authentication required', 'code': AuthError.code}), 401
