from datetime import datetime, timedelta

from chatcollab.core.security import Actor
from chatcollab.models import Chat, InviteStatus
from chatcollab.services import tokens
from chatcollab.services.tokens import InviteOutcome, InviteRejection

NOW = datetime(2024, 5, 1, 12, 0, 0)
BOB = Actor(id="user-bob", name="Bob", email="bob@example.com")


def make_invite(**overrides):
    kwargs = dict(chat_id="chat-1", inviter_id="owner", inviter_name="Olivia", invitee_email="Bob@Example.com ", role="editor", now=NOW)
    kwargs.update(overrides)
    return tokens.create_invite(**kwargs)


def test_share_tokens_are_random_and_url_safe():
    first = tokens.generate_share_token(12)
    second = tokens.generate_share_token(12)
    assert len(first) == 12
    assert first != second
    assert set(first) <= set(tokens.SHARE_TOKEN_ALPHABET)


def test_share_token_length_has_a_floor():
    assert len(tokens.generate_share_token(4)) == tokens.MIN_SHARE_TOKEN_LENGTH
    assert len(tokens.generate_share_token(32)) == 32


def test_build_share_link():
    link = tokens.build_share_link("https://chat.example.com/", "chat-1", "tok")
    assert link == "https://chat.example.com/shared/chat-1/tok"


def test_validate_share_token_is_exact():
    token = tokens.generate_share_token()
    chat = Chat(id="chat-1", owner_id="owner", share_settings={"share_link": tokens.build_share_link("https://x", "chat-1", token)})
    assert tokens.validate_share_token(chat, token)
    assert not tokens.validate_share_token(chat, token[:-1])
    assert not tokens.validate_share_token(chat, None)
    assert not tokens.validate_share_token(Chat(id="chat-2", owner_id="owner", share_settings=None), token)


def test_create_invite_defaults():
    invite = make_invite()
    assert invite.status == InviteStatus.PENDING.value
    assert invite.invitee_email == "bob@example.com"
    assert invite.expires_at == NOW + timedelta(days=7)
    assert tokens.invite_is_open(invite, NOW)
    assert not tokens.invite_is_open(invite, NOW + timedelta(days=7))


def test_accept_is_terminal():
    invite = make_invite()

    first = tokens.resolve_invite(invite, "accept", BOB, NOW)
    assert first.outcome is InviteOutcome.ACCEPT
    assert invite.status == InviteStatus.ACCEPTED.value
    assert first.collaborator.user_id == BOB.id
    assert first.collaborator.role == "editor"
    assert first.collaborator.is_online

    second = tokens.resolve_invite(invite, "accept", BOB, NOW)
    assert second.outcome is InviteOutcome.INVALID
    assert second.reason is InviteRejection.NOT_PENDING
    assert second.collaborator is None


def test_email_mismatch_leaves_invite_pending():
    invite = make_invite()
    alice = Actor(id="user-alice", name="Alice", email="alice@example.com")

    result = tokens.resolve_invite(invite, "accept", alice, NOW)

    assert result.outcome is InviteOutcome.INVALID
    assert result.reason is InviteRejection.EMAIL_MISMATCH
    assert invite.status == InviteStatus.PENDING.value


def test_email_match_ignores_case():
    invite = make_invite()
    shouting_bob = Actor(id="user-bob", name="Bob", email="BOB@EXAMPLE.COM")
    assert tokens.resolve_invite(invite, "accept", shouting_bob, NOW).outcome is InviteOutcome.ACCEPT


def test_expired_invite_transitions_to_expired():
    invite = make_invite()
    result = tokens.resolve_invite(invite, "accept", BOB, NOW + timedelta(days=8))
    assert result.reason is InviteRejection.EXPIRED
    assert invite.status == InviteStatus.EXPIRED.value

    again = tokens.resolve_invite(invite, "accept", BOB, NOW + timedelta(days=9))
    assert again.reason is InviteRejection.EXPIRED


def test_decline_and_unknown_action():
    invite = make_invite()
    assert tokens.resolve_invite(invite, "maybe", BOB, NOW).reason is InviteRejection.UNKNOWN_ACTION
    assert invite.status == InviteStatus.PENDING.value

    assert tokens.resolve_invite(invite, "decline", BOB, NOW).outcome is InviteOutcome.DECLINE
    assert invite.status == InviteStatus.DECLINED.value
    assert tokens.resolve_invite(invite, "accept", BOB, NOW).reason is InviteRejection.NOT_PENDING
