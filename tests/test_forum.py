"""Forum access, posting, moderation, reactions and threads."""

import pytest

from felicity.core.errors import BusinessRuleError, Forbidden, NotFound, ValidationFailed
from felicity.realtime.broadcaster import InMemoryBroadcaster, forum_room
from felicity.services import forum
from felicity.services.admission import cancel_registration, register_for_event


class RecordingSocket:
    def __init__(self):
        self.frames = []

    async def send_json(self, data):
        self.frames.append(data)


@pytest.fixture
async def setting(db, build):
    """An organiser, a published event and one registered participant."""
    organiser = await build.organiser()
    event = await build.event(organiser)
    participant = await build.participant()
    await register_for_event(db, participant.user_id, event.id)
    return organiser, event, participant


class TestAccessContext:
    async def test_owner_gets_every_capability(self, db, build, as_actor):
        organiser = await build.organiser()
        event = await build.event(organiser, status="draft")

        access = await forum.get_access_context(db, as_actor(organiser), event.id)

        assert (access.can_moderate, access.can_announce, access.can_participate) == (True, True, True)

    async def test_other_organiser_sees_not_found(self, db, build, as_actor):
        owner = await build.organiser()
        stranger = await build.organiser(name="Drama Club")
        event = await build.event(owner)

        with pytest.raises(NotFound):
            await forum.get_access_context(db, as_actor(stranger), event.id)

    async def test_participant_without_registration(self, db, build, as_actor):
        organiser = await build.organiser()
        event = await build.event(organiser)
        participant = await build.participant()

        access = await forum.get_access_context(db, as_actor(participant), event.id)

        assert not access.can_participate
        assert not access.can_moderate

    async def test_participant_cannot_see_drafts(self, db, build, as_actor):
        organiser = await build.organiser()
        event = await build.event(organiser, status="draft")
        participant = await build.participant()

        with pytest.raises(NotFound):
            await forum.get_access_context(db, as_actor(participant), event.id)

    async def test_cancelled_registration_loses_access(self, db, build, as_actor):
        organiser = await build.organiser()
        event = await build.event(organiser)
        participant = await build.participant()
        registration = await register_for_event(db, participant.user_id, event.id)
        await cancel_registration(db, participant.user_id, registration.id)

        access = await forum.get_access_context(db, as_actor(participant), event.id)
        assert not access.can_participate

    async def test_admin_may_participate_without_moderation(self, db, build, as_actor):
        organiser = await build.organiser()
        event = await build.event(organiser, status="draft")
        admin = await build.admin()

        access = await forum.get_access_context(db, as_actor(admin), event.id)

        assert access.can_participate
        assert not access.can_moderate
        assert not access.can_announce


class TestPosting:
    async def test_registration_unlocks_posting(self, db, build, as_actor):
        """Forbidden before registering; afterwards the post is listed after pinned ones."""
        organiser = await build.organiser()
        event = await build.event(organiser)
        participant = await build.participant(first_name="Mira")

        with pytest.raises(Forbidden):
            await forum.post_message(db, as_actor(participant), event.id, "Hello?")

        await register_for_event(db, participant.user_id, event.id)
        posted = await forum.post_message(db, as_actor(participant), event.id, "Hello!")

        notice = await forum.post_message(
            db, as_actor(organiser), event.id, "Venue moved", is_announcement=True
        )
        await forum.toggle_pin(db, as_actor(organiser), event.id, notice["id"])

        listing = await forum.list_messages(db, as_actor(participant), event.id)
        ids = [m["id"] for m in listing["messages"]]

        assert ids == [notice["id"], posted["id"]]
        assert listing["messages"][0]["is_pinned"] is True
        assert listing["permissions"] == {
            "can_moderate": False,
            "can_announce": False,
            "can_participate": True,
        }
        assert posted["author_name"] == "Mira Rao"
        assert posted["author_role"] == "participant"

    async def test_content_is_trimmed_and_bounded(self, db, setting, as_actor):
        _, event, participant = setting

        posted = await forum.post_message(db, as_actor(participant), event.id, "  spaced  ")
        assert posted["content"] == "spaced"

        for bad in ("", "   ", "x" * (forum.MAX_CONTENT_LENGTH + 1)):
            with pytest.raises(ValidationFailed):
                await forum.post_message(db, as_actor(participant), event.id, bad)

    async def test_participant_cannot_announce(self, db, setting, as_actor):
        _, event, participant = setting

        with pytest.raises(Forbidden):
            await forum.post_message(
                db, as_actor(participant), event.id, "Free pizza", is_announcement=True
            )

    async def test_parent_must_belong_to_event(self, db, build, setting, as_actor):
        organiser, event, participant = setting
        other = await build.event(organiser, name="Other")
        foreign = await forum.post_message(db, as_actor(organiser), other.id, "elsewhere")

        with pytest.raises(NotFound):
            await forum.post_message(
                db, as_actor(participant), event.id, "reply", parent_message_id=foreign["id"]
            )


class TestModeration:
    async def test_delete_shows_placeholder_and_keeps_replies(self, db, setting, as_actor):
        organiser, event, participant = setting
        root = await forum.post_message(db, as_actor(participant), event.id, "spam spam")
        reply = await forum.post_message(
            db, as_actor(participant), event.id, "a reply", parent_message_id=root["id"]
        )

        deleted = await forum.delete_message(db, as_actor(organiser), event.id, root["id"])

        assert deleted["is_deleted"] is True
        assert deleted["content"] == forum.DELETED_PLACEHOLDER

        listing = await forum.list_messages(db, as_actor(participant), event.id)
        by_id = {m["id"]: m for m in listing["messages"]}
        assert by_id[root["id"]]["content"] == forum.DELETED_PLACEHOLDER
        assert by_id[reply["id"]]["content"] == "a reply"
        assert by_id[reply["id"]]["parent_message_id"] == root["id"]

    async def test_participants_cannot_moderate(self, db, setting, as_actor):
        _, event, participant = setting
        message = await forum.post_message(db, as_actor(participant), event.id, "mine")

        with pytest.raises(Forbidden):
            await forum.toggle_pin(db, as_actor(participant), event.id, message["id"])
        with pytest.raises(Forbidden):
            await forum.delete_message(db, as_actor(participant), event.id, message["id"])

    async def test_pin_toggles(self, db, setting, as_actor):
        organiser, event, participant = setting
        message = await forum.post_message(db, as_actor(participant), event.id, "pin me")

        assert (await forum.toggle_pin(db, as_actor(organiser), event.id, message["id"]))["is_pinned"]
        assert not (await forum.toggle_pin(db, as_actor(organiser), event.id, message["id"]))["is_pinned"]


class TestReactions:
    async def test_same_emoji_twice_restores_state(self, db, setting, as_actor):
        _, event, participant = setting
        actor = as_actor(participant)
        message = await forum.post_message(db, actor, event.id, "react to me")

        first = await forum.react_to_message(db, actor, event.id, message["id"], "👍")
        thumbs = next(r for r in first["reactions"] if r["emoji"] == "👍")
        assert thumbs == {"emoji": "👍", "count": 1, "reacted": True}

        second = await forum.react_to_message(db, actor, event.id, message["id"], "👍")
        assert second["reactions"] == message["reactions"]

    async def test_distinct_emojis_coexist(self, db, setting, as_actor):
        _, event, participant = setting
        actor = as_actor(participant)
        message = await forum.post_message(db, actor, event.id, "party")

        await forum.react_to_message(db, actor, event.id, message["id"], "🎉")
        result = await forum.react_to_message(db, actor, event.id, message["id"], "❤️")

        summary = {r["emoji"]: (r["count"], r["reacted"]) for r in result["reactions"]}
        assert summary["🎉"] == (1, True)
        assert summary["❤️"] == (1, True)
        assert summary["👍"] == (0, False)
        assert "👏" not in summary

    async def test_reactions_from_two_users_both_count(self, db, build, setting, as_actor):
        organiser, event, participant = setting
        message = await forum.post_message(db, as_actor(participant), event.id, "vote")

        await forum.react_to_message(db, as_actor(participant), event.id, message["id"], "👏")
        result = await forum.react_to_message(db, as_actor(organiser), event.id, message["id"], "👏")

        clap = next(r for r in result["reactions"] if r["emoji"] == "👏")
        assert clap == {"emoji": "👏", "count": 2, "reacted": True}

    async def test_cannot_react_to_removed_message(self, db, setting, as_actor):
        organiser, event, participant = setting
        message = await forum.post_message(db, as_actor(participant), event.id, "gone soon")
        await forum.delete_message(db, as_actor(organiser), event.id, message["id"])

        with pytest.raises(BusinessRuleError, match="removed"):
            await forum.react_to_message(db, as_actor(participant), event.id, message["id"], "👍")

    async def test_unknown_emoji(self, db, setting, as_actor):
        _, event, participant = setting
        message = await forum.post_message(db, as_actor(participant), event.id, "hi")

        with pytest.raises(ValidationFailed):
            await forum.react_to_message(db, as_actor(participant), event.id, message["id"], "🔥")


class TestThread:
    async def test_breadth_first_order(self, db, setting, as_actor):
        _, event, participant = setting
        actor = as_actor(participant)
        root = await forum.post_message(db, actor, event.id, "root")
        a = await forum.post_message(db, actor, event.id, "a", parent_message_id=root["id"])
        b = await forum.post_message(db, actor, event.id, "b", parent_message_id=root["id"])
        a1 = await forum.post_message(db, actor, event.id, "a1", parent_message_id=a["id"])
        await forum.post_message(db, actor, event.id, "unrelated")

        thread = await forum.get_thread(db, actor, event.id, root["id"])

        assert [m["id"] for m in thread] == [root["id"], a["id"], b["id"], a1["id"]]


class TestBroadcast:
    async def test_mutations_reach_room_subscribers(self, db, setting, as_actor):
        organiser, event, participant = setting
        broadcaster = InMemoryBroadcaster()
        socket = RecordingSocket()
        await broadcaster.join(forum_room(event.id), socket)

        message = await forum.post_message(
            db, as_actor(participant), event.id, "live", broadcaster=broadcaster
        )
        await forum.toggle_pin(
            db, as_actor(organiser), event.id, message["id"], broadcaster=broadcaster
        )

        assert [(f["event"], f["type"]) for f in socket.frames] == [
            ("forum:event", "message_created"),
            ("forum:event", "message_updated"),
        ]
        assert socket.frames[0]["payload"]["message"]["content"] == "live"
        assert socket.frames[1]["payload"]["message"]["is_pinned"] is True

    async def test_rejected_mutation_is_not_broadcast(self, db, setting, as_actor):
        _, event, participant = setting
        broadcaster = InMemoryBroadcaster()
        socket = RecordingSocket()
        await broadcaster.join(forum_room(event.id), socket)

        with pytest.raises(Forbidden):
            await forum.post_message(
                db, as_actor(participant), event.id, "x", is_announcement=True, broadcaster=broadcaster
            )
        assert socket.frames == []
