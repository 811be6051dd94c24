from datetime import datetime, timedelta

import pytest

from chatcollab.models import Chat, ChatCollaborator
from chatcollab.services import access
from chatcollab.services.access import ShareLinkCheck

NOW = datetime(2024, 5, 1, 12, 0, 0)
LINK = "https://chat.example.com/shared/chat-1/AbCdEfGhIjKl"
TOKEN = "AbCdEfGhIjKl"


def make_chat(is_shared=False, share_settings=None, collaborators=()):
    chat = Chat(
        id="chat-1",
        owner_id="owner",
        owner_email="owner@example.com",
        title="Test chat",
        messages=[],
        is_shared=is_shared,
        share_settings=share_settings,
        created_at=NOW,
        updated_at=NOW,
    )
    for user_id, role in collaborators:
        chat.collaborators.append(
            ChatCollaborator(id=f"c-{user_id}", chat_id=chat.id, user_id=user_id, name=user_id, email="", role=role)
        )
    return chat


def shared(**overrides):
    settings = {"is_public": True, "allow_editing": False, "allow_invites": False, "expires_at": None, "share_link": LINK}
    settings.update(overrides)
    return settings


@pytest.mark.parametrize(
    "chat",
    [
        make_chat(),
        make_chat(is_shared=True, share_settings=shared(is_public=False)),
        make_chat(is_shared=True, share_settings=shared(expires_at=(NOW - timedelta(days=1)).isoformat())),
    ],
)
def test_owner_can_always_read_and_write(chat):
    assert access.can_read(chat, "owner", NOW)
    assert access.can_write(chat, "owner")
    assert access.role_of(chat, "owner") == access.OWNER_ROLE


def test_outsider_has_no_access_to_unshared_chat():
    chat = make_chat()
    assert not access.can_read(chat, "stranger", NOW)
    assert not access.can_write(chat, "stranger")
    assert not access.can_read(chat, None, NOW)


def test_collaborator_roles():
    chat = make_chat(collaborators=[("ed", "editor"), ("vi", "viewer")])
    assert access.can_read(chat, "ed", NOW) and access.can_write(chat, "ed")
    assert access.can_read(chat, "vi", NOW)
    assert not access.can_write(chat, "vi")
    assert access.role_of(chat, "vi") == "viewer"


def test_public_share_grants_read_only():
    chat = make_chat(is_shared=True, share_settings=shared())
    assert access.can_read(chat, "stranger", NOW)
    assert access.can_read(chat, None, NOW)
    assert not access.can_write(chat, "stranger")


def test_non_public_share_does_not_open_reads():
    chat = make_chat(is_shared=True, share_settings=shared(is_public=False))
    assert not access.can_read(chat, "stranger", NOW)


def test_public_read_stops_at_expiry_and_stays_closed():
    expires = NOW + timedelta(hours=1)
    chat = make_chat(is_shared=True, share_settings=shared(expires_at=expires.isoformat()), collaborators=[("ed", "editor")])

    assert access.can_read(chat, "stranger", NOW)
    for later in (expires + timedelta(seconds=1), expires + timedelta(days=3), expires + timedelta(days=400)):
        assert not access.can_read(chat, "stranger", later)
        assert access.can_read(chat, "ed", later)


def test_can_administer_invites_vs_settings():
    chat = make_chat(
        is_shared=True,
        share_settings=shared(is_public=False, allow_invites=True),
        collaborators=[("ed", "editor"), ("vi", "viewer")],
    )
    assert access.can_administer(chat, "owner", now=NOW)
    assert access.can_administer(chat, "ed", now=NOW)
    assert not access.can_administer(chat, "vi", now=NOW)
    assert access.can_administer(chat, "vi", invite_only=True, now=NOW)
    assert not access.can_administer(chat, "stranger", invite_only=True, now=NOW)


def test_allow_invites_off_blocks_viewer_invites():
    chat = make_chat(is_shared=True, share_settings=shared(is_public=False), collaborators=[("vi", "viewer")])
    assert not access.can_administer(chat, "vi", invite_only=True, now=NOW)


def test_check_share_link_outcomes():
    assert access.check_share_link(make_chat(), TOKEN, now=NOW) is ShareLinkCheck.NOT_SHARED

    chat = make_chat(is_shared=True, share_settings=shared(allow_editing=True), collaborators=[("ed", "editor")])
    assert access.check_share_link(chat, "wrong-token!", now=NOW) is ShareLinkCheck.INVALID_TOKEN
    assert access.check_share_link(chat, TOKEN.lower(), now=NOW) is ShareLinkCheck.INVALID_TOKEN
    assert access.check_share_link(chat, TOKEN, now=NOW) is ShareLinkCheck.OK
    assert access.check_share_link(chat, TOKEN, "ed", NOW, for_join=True) is ShareLinkCheck.ALREADY_MEMBER
    assert access.check_share_link(chat, TOKEN, "owner", NOW, for_join=True) is ShareLinkCheck.ALREADY_MEMBER
    assert access.check_share_link(chat, TOKEN, "stranger", NOW, for_join=True) is ShareLinkCheck.OK

    read_only = make_chat(is_shared=True, share_settings=shared())
    assert access.check_share_link(read_only, TOKEN, "stranger", NOW, for_join=True) is ShareLinkCheck.EDITING_DISABLED


def test_join_via_share_link_respects_expiry():
    expires = NOW + timedelta(minutes=5)
    chat = make_chat(is_shared=True, share_settings=shared(allow_editing=True, expires_at=expires.isoformat()))

    assert access.can_join_via_share_link(chat, TOKEN, "stranger", NOW)
    assert not access.can_join_via_share_link(chat, TOKEN, None, NOW)
    assert not access.can_join_via_share_link(chat, TOKEN, "stranger", expires + timedelta(seconds=1))
    assert access.check_share_link(chat, TOKEN, "stranger", expires + timedelta(days=1)) is ShareLinkCheck.EXPIRED


def test_share_token_is_last_path_segment():
    assert access.share_token_of(LINK) == TOKEN
    assert access.share_token_of(LINK + "/") == TOKEN
    assert access.share_token_of(None) is None


def test_parse_timestamp_normalizes_to_naive_utc():
    assert access.parse_timestamp("2024-05-01T14:00:00+02:00") == NOW
    assert access.parse_timestamp("2024-05-01T12:00:00Z") == NOW
    assert access.parse_timestamp(None) is None
