import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from healthportal.auth import jwt_handler
from healthportal.auth.dependencies import Principal, get_current_principal, require_role
from healthportal.routes.auth_routes import me


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_round_trip_carries_identity() -> None:
    token = jwt_handler.create_access_token(7, 'doctor')

    payload = jwt_handler.decode_access_token(token)

    assert payload['sub'] == '7'
    assert payload['user_id'] == 7
    assert payload['role'] == 'doctor'
    assert payload['exp'] > payload['iat']


def test_get_current_principal_returns_token_identity() -> None:
    principal = get_current_principal(_credentials(jwt_handler.create_access_token(3, 'patient')))

    assert principal == Principal(user_id=3, role='patient')
    assert me(principal=principal) == principal


def test_get_current_principal_requires_token() -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_principal(None)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Authentication required. No token provided.'


def test_get_current_principal_rejects_expired_token() -> None:
    token = jwt_handler.create_access_token(3, 'patient', expires_minutes=-5)

    with pytest.raises(HTTPException) as exception_info:
        get_current_principal(_credentials(token))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Token has expired'


def test_get_current_principal_rejects_foreign_signature() -> None:
    token = jwt.encode({'sub': '3', 'user_id': 3, 'role': 'patient'}, 'some-other-secret', algorithm='HS256')

    with pytest.raises(HTTPException) as exception_info:
        get_current_principal(_credentials(token))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_current_principal_rejects_unknown_role() -> None:
    token = jwt_handler.create_access_token(3, 'admin')

    with pytest.raises(HTTPException) as exception_info:
        get_current_principal(_credentials(token))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token claims'


def test_require_role_rejects_other_roles() -> None:
    dependency = require_role('doctor')

    assert dependency(principal=Principal(user_id=1, role='doctor')).user_id == 1
    with pytest.raises(HTTPException) as exception_info:
        dependency(principal=Principal(user_id=2, role='patient'))

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'Access denied. Required role: doctor'
