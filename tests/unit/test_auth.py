"""
Unit Tests for Access-Token Verification
"""

import time

import pytest
import sys
import os

from fastapi import HTTPException
from jose import jwt

# Add project root and backend to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_sat_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from lib.auth import decode_access_token, get_current_user

SECRET = "test-jwt-secret"
USER_ID = "11111111-1111-4111-8111-111111111111"


def make_token(secret=SECRET, **overrides):
    claims = {
        "sub": USER_ID,
        "email": "student@example.com",
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
    }
    claims.update(overrides)
    return jwt.encode({k: v for k, v in claims.items() if v is not None}, secret, algorithm="HS256")


class TestDecodeAccessToken:
    """Test suite for decode_access_token."""

    def test_valid_token(self):
        user = decode_access_token(make_token(), SECRET)
        assert user == {"id": USER_ID, "email": "student@example.com"}

    def test_expired_token(self):
        with pytest.raises(HTTPException) as excinfo:
            decode_access_token(make_token(exp=int(time.time()) - 60), SECRET)
        assert excinfo.value.status_code == 401
        assert excinfo.value.detail == "Token expired"

    @pytest.mark.parametrize("token", [
        make_token(secret="someone-else"),
        make_token(aud="anon"),
        "not-a-jwt",
    ])
    def test_untrusted_token(self, token):
        with pytest.raises(HTTPException) as excinfo:
            decode_access_token(token, SECRET)
        assert excinfo.value.status_code == 401

    def test_token_without_subject(self):
        with pytest.raises(HTTPException) as excinfo:
            decode_access_token(make_token(sub=None), SECRET)
        assert excinfo.value.status_code == 401


class TestGetCurrentUser:
    """Header checks that run before any verification."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", [None, "", "Token abc", "bearer abc"])
    async def test_bad_header_rejected(self, header):
        with pytest.raises(HTTPException) as excinfo:
            await get_current_user(authorization=header)
        assert excinfo.value.status_code == 401
