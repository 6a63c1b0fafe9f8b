"""Tests for SupabaseAuthClient against a mocked ``supabase.auth``."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from pu_connect.database import DatabaseManager
from pu_connect.models.auth_models import AuthError, AuthErrorCode
from pu_connect.models.identity import IdentityMetadata
from pu_connect.services.auth_client import SupabaseAuthClient

from .conftest import AMA_EMAIL, AMA_ID, PASSWORD


class GoTrueError(Exception):
    """Shape of ``supabase_auth`` API errors: message plus code."""

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


def _user(user_id: str = AMA_ID, email: str = AMA_EMAIL, **metadata):
    return SimpleNamespace(id=user_id, email=email, user_metadata=metadata)


def _session(user=None):
    return SimpleNamespace(
        user=user or _user(full_name="Ama Mensah"),
        access_token="access",
        refresh_token="refresh",
        expires_at=1_900_000_000,
    )


@pytest.fixture
def supabase_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def auth_client(supabase_client, logger) -> SupabaseAuthClient:
    db = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=":memory:",
        logger=logger,
        supabase_client=supabase_client,
    )
    return SupabaseAuthClient(db=db, logger=logger)


class TestSessionQueries:
    def test_current_session_is_converted(self, auth_client, supabase_client):
        supabase_client.auth.get_session.return_value = _session()

        session = auth_client.get_current_session()

        assert session.identity.id == AMA_ID
        assert session.identity.metadata.full_name == "Ama Mensah"
        assert session.expires_at == 1_900_000_000

    def test_no_session_is_none(self, auth_client, supabase_client):
        supabase_client.auth.get_session.return_value = None

        assert auth_client.get_current_session() is None

    def test_get_identity(self, auth_client, supabase_client):
        supabase_client.auth.get_user.return_value = SimpleNamespace(
            user=_user(full_name="Ama Mensah", faculty="Science", unknown_key=1),
        )

        identity = auth_client.get_identity()

        assert identity.metadata.faculty == "Science"

    def test_unconfigured_supabase_is_network_error(self, logger):
        db = DatabaseManager(supabase_url="", supabase_key="", sqlite_path=":memory:", logger=logger)
        client = SupabaseAuthClient(db=db, logger=logger)

        with pytest.raises(AuthError) as exc_info:
            client.get_current_session()

        assert exc_info.value.code == AuthErrorCode.NETWORK_ERROR


class TestCredentialFlows:
    def test_sign_in_passes_credentials(self, auth_client, supabase_client):
        supabase_client.auth.sign_in_with_password.return_value = SimpleNamespace(
            user=_user(), session=_session(),
        )

        session = auth_client.sign_in_with_password(AMA_EMAIL, PASSWORD)

        supabase_client.auth.sign_in_with_password.assert_called_once_with(
            {"email": AMA_EMAIL, "password": PASSWORD},
        )
        assert session.access_token == "access"

    def test_bad_credentials_keep_server_message(self, auth_client, supabase_client):
        supabase_client.auth.sign_in_with_password.side_effect = GoTrueError(
            "Invalid login credentials", code="invalid_credentials",
        )

        with pytest.raises(AuthError) as exc_info:
            auth_client.sign_in_with_password(AMA_EMAIL, "nope")

        assert exc_info.value.message == "Invalid login credentials"
        assert exc_info.value.code == AuthErrorCode.INVALID_CREDENTIALS
        assert exc_info.value.friendly_message == "Incorrect email or password."

    def test_sign_up_attaches_metadata(self, auth_client, supabase_client):
        supabase_client.auth.sign_up.return_value = SimpleNamespace(
            user=_user(full_name="Ada"), session=None,
        )

        identity, session = auth_client.sign_up(
            AMA_EMAIL, PASSWORD, IdentityMetadata(full_name="Ada", student_id="S1"),
        )

        payload = supabase_client.auth.sign_up.call_args.args[0]
        assert payload["options"]["data"] == {"full_name": "Ada", "student_id": "S1"}
        assert identity.id == AMA_ID
        assert session is None

    def test_duplicate_registration(self, auth_client, supabase_client):
        supabase_client.auth.sign_up.side_effect = GoTrueError("User already registered")

        with pytest.raises(AuthError) as exc_info:
            auth_client.sign_up(AMA_EMAIL, PASSWORD, IdentityMetadata())

        assert exc_info.value.code == AuthErrorCode.EMAIL_ALREADY_EXISTS

    def test_connection_error_is_network_error(self, auth_client, supabase_client):
        supabase_client.auth.sign_out.side_effect = ConnectionError("offline")

        with pytest.raises(AuthError) as exc_info:
            auth_client.sign_out()

        assert exc_info.value.code == AuthErrorCode.NETWORK_ERROR

    def test_password_reset_redirect(self, auth_client, supabase_client):
        auth_client.request_password_reset(AMA_EMAIL, "https://connect.example/reset-password")

        supabase_client.auth.reset_password_for_email.assert_called_once_with(
            AMA_EMAIL, {"redirect_to": "https://connect.example/reset-password"},
        )


class TestSubscribe:
    def test_events_are_converted_to_sessions(self, auth_client, supabase_client):
        received = []
        auth_client.subscribe(received.append)
        listener = supabase_client.auth.on_auth_state_change.call_args.args[0]

        listener("SIGNED_IN", _session())
        listener("SIGNED_OUT", None)

        assert received[0].identity.id == AMA_ID
        assert received[1] is None

    def test_unsubscribe_is_idempotent(self, auth_client, supabase_client):
        handle = supabase_client.auth.on_auth_state_change.return_value

        subscription = auth_client.subscribe(lambda _s: None)
        subscription.unsubscribe()
        subscription.unsubscribe()

        handle.unsubscribe.assert_called_once()
        assert not subscription.active
