"""Event drafts, status-dependent edits, publishing and status transitions."""

from datetime import timedelta

import pytest

from felicity.core.errors import BusinessRuleError, NotFound, ValidationFailed
from felicity.core.timeutil import utcnow
from felicity.models.event import Event
from felicity.services.admission import register_for_event
from felicity.services.events import (
    build_analytics,
    build_publish_summary,
    create_event_draft,
    publish_event,
    update_event,
    update_event_status,
)


class RecordingAnnouncer:
    def __init__(self):
        self.calls = []

    def dispatch(self, webhook_url, content):
        self.calls.append((webhook_url, content))


class TestCreateDraft:
    async def test_minimal_draft(self, db, build):
        """Only name and type are needed for a draft."""
        organiser = await build.organiser()

        event = await create_event_draft(db, organiser, {"name": "Quiz", "event_type": "normal"})

        assert event.status == "draft"
        assert event.organiser_id == organiser.id
        assert event.reg_limit is None
        assert event.merch_items == []

    async def test_rejects_start_after_end(self, db, build):
        organiser = await build.organiser()
        now = utcnow()

        with pytest.raises(ValidationFailed):
            await create_event_draft(
                db,
                organiser,
                {
                    "name": "Quiz",
                    "event_type": "normal",
                    "start_time": now + timedelta(days=2),
                    "end_time": now + timedelta(days=1),
                },
            )

    async def test_merch_catalog_is_stored_in_order(self, db, build):
        organiser = await build.organiser()

        event = await create_event_draft(
            db,
            organiser,
            {
                "name": "Merch",
                "event_type": "merchandise",
                "merch_items": [
                    {"name": "Hoodie", "purchase_limit": 2, "variants": [
                        {"label": "S", "stock": 3}, {"label": "M", "stock": 5},
                    ]},
                    {"name": "Cap", "variants": [{"label": "One size", "stock": 10}]},
                ],
            },
        )

        assert [i.name for i in event.merch_items] == ["Hoodie", "Cap"]
        assert [v.label for v in event.merch_items[0].variants] == ["S", "M"]
        assert event.merch_items[1].purchase_limit == 1


class TestUpdatePublished:
    """Edits on a published, not yet running event."""

    async def test_reg_limit_can_only_increase(self, db, build):
        """A limit of 50 cannot drop to 40 but can rise to 60."""
        organiser = await build.organiser()
        event = await build.event(organiser, reg_limit=50)

        with pytest.raises(ValidationFailed):
            await update_event(db, organiser, event.id, {"reg_limit": 40})

        updated = await update_event(db, organiser, event.id, {"reg_limit": 60})
        assert updated.reg_limit == 60

    async def test_deadline_can_only_be_extended(self, db, build):
        organiser = await build.organiser()
        event = await build.event(organiser)
        deadline = event.registration_deadline

        with pytest.raises(ValidationFailed):
            await update_event(
                db, organiser, event.id, {"registration_deadline": deadline - timedelta(hours=1)}
            )

        updated = await update_event(
            db, organiser, event.id, {"registration_deadline": deadline + timedelta(hours=6)}
        )
        assert updated.registration_deadline == deadline + timedelta(hours=6)

    async def test_description_is_editable(self, db, build):
        organiser = await build.organiser()
        event = await build.event(organiser)

        updated = await update_event(db, organiser, event.id, {"description": "Now with pizza"})
        assert updated.description == "Now with pizza"

    async def test_description_cannot_be_cleared(self, db, build):
        """A published event keeps every required field populated."""
        organiser = await build.organiser()
        event = await build.event(organiser, description="Bring a laptop")

        for blank in (None, "   "):
            with pytest.raises(ValidationFailed):
                await update_event(db, organiser, event.id, {"description": blank})

        stored = await db.get(Event, event.id)
        assert stored.description == "Bring a laptop"

    async def test_other_fields_are_locked(self, db, build):
        organiser = await build.organiser()
        event = await build.event(organiser)

        with pytest.raises(BusinessRuleError):
            await update_event(db, organiser, event.id, {"name": "Renamed"})

    async def test_ongoing_event_is_not_editable(self, db, build):
        organiser = await build.organiser()
        now = utcnow()
        event = await build.event(
            organiser,
            registration_deadline=now - timedelta(hours=2),
            start_time=now - timedelta(hours=1),
            end_time=now + timedelta(hours=5),
        )

        with pytest.raises(BusinessRuleError, match="not editable"):
            await update_event(db, organiser, event.id, {"description": "late change"})

    @pytest.mark.parametrize("stored", ["completed", "closed"])
    async def test_terminal_statuses_are_not_editable(self, db, build, stored):
        organiser = await build.organiser()
        event = await build.event(organiser, status=stored)

        with pytest.raises(BusinessRuleError, match="not editable"):
            await update_event(db, organiser, event.id, {"description": "x"})

    async def test_other_organisers_event_is_not_found(self, db, build):
        owner = await build.organiser()
        other = await build.organiser(name="Music Club")
        event = await build.event(owner)

        with pytest.raises(NotFound):
            await update_event(db, other, event.id, {"description": "x"})


class TestFormLock:
    """The custom form freezes at the first registration."""

    async def test_form_change_rejected_after_registration(self, db, build):
        organiser = await build.organiser()
        participant = await build.participant()
        event = await build.event(organiser, custom_form=[{"label": "Team", "required": False}])
        await register_for_event(db, participant.user_id, event.id)

        for _ in range(2):
            with pytest.raises(BusinessRuleError, match="Form is locked"):
                await update_event(db, organiser, event.id, {"custom_form": []})

    async def test_form_lock_applies_to_drafts(self, db, build):
        """The lock is checked on a live count, whatever the status."""
        organiser = await build.organiser()
        participant = await build.participant()
        event = await build.event(organiser)
        await register_for_event(db, participant.user_id, event.id)

        await build.update(event, status="draft")

        with pytest.raises(BusinessRuleError, match="Form is locked"):
            await update_event(db, organiser, event.id, {"custom_form": [{"label": "Size"}]})

    async def test_draft_form_editable_without_registrations(self, db, build):
        organiser = await build.organiser()
        event = await build.event(organiser, status="draft")

        updated = await update_event(
            db, organiser, event.id, {"custom_form": [{"label": "Size", "required": True}]}
        )
        assert updated.custom_form == [{"label": "Size", "required": True}]


class TestPublish:
    async def test_publish_sets_timestamp_and_announces(self, db, build):
        organiser = await build.organiser(webhook="https://discord.example/hook")
        event = await build.event(organiser, status="draft", published_at=None)
        announcer = RecordingAnnouncer()

        published = await publish_event(db, organiser, event.id, announcer=announcer)

        assert published.status == "published"
        assert published.published_at is not None
        assert announcer.calls == [("https://discord.example/hook", build_publish_summary(published))]
        assert "Hack Night" in announcer.calls[0][1]

    async def test_publish_lists_missing_fields(self, db, build):
        organiser = await build.organiser()
        event = await build.event(
            organiser, status="draft", description=None, reg_limit=None, category=None
        )

        with pytest.raises(ValidationFailed) as exc:
            await publish_event(db, organiser, event.id)

        assert "description" in str(exc.value)
        assert "reg_limit" in str(exc.value)
        assert "category" in str(exc.value)

    async def test_only_drafts_can_be_published(self, db, build):
        organiser = await build.organiser()
        event = await build.event(organiser)

        with pytest.raises(BusinessRuleError):
            await publish_event(db, organiser, event.id)


class TestStatusTransitions:
    async def test_forward_transitions(self, db, build):
        organiser = await build.organiser()
        event = await build.event(organiser)

        for target in ("ongoing", "completed", "closed"):
            event = await update_event_status(db, organiser, event.id, status=target)
            assert event.status == target

    async def test_no_backward_transition(self, db, build):
        organiser = await build.organiser()
        event = await build.event(organiser, status="completed")

        with pytest.raises(BusinessRuleError, match="back"):
            await update_event_status(db, organiser, event.id, status="ongoing")

    async def test_draft_cannot_transition(self, db, build):
        organiser = await build.organiser()
        event = await build.event(organiser, status="draft")

        with pytest.raises(BusinessRuleError):
            await update_event_status(db, organiser, event.id, status="closed")

    async def test_registration_toggle(self, db, build):
        organiser = await build.organiser()
        event = await build.event(organiser)

        event = await update_event_status(db, organiser, event.id, registration_status="closed")
        assert event.registration_manually_closed is True

        event = await update_event_status(db, organiser, event.id, registration_status="open")
        assert event.registration_manually_closed is False

    async def test_cannot_reopen_after_deadline(self, db, build):
        organiser = await build.organiser()
        event = await build.event(
            organiser,
            registration_deadline=utcnow() - timedelta(hours=1),
            registration_manually_closed=True,
        )

        with pytest.raises(BusinessRuleError, match="deadline"):
            await update_event_status(db, organiser, event.id, registration_status="open")


class TestAnalytics:
    async def test_counts_and_revenue(self, db, build):
        """Revenue is the event fee times registrations plus purchased quantity."""
        organiser = await build.organiser()
        event = await build.event(organiser, fee=200)
        for name in ("A", "B", "C"):
            participant = await build.participant(first_name=name)
            await register_for_event(db, participant.user_id, event.id)

        stats = await build_analytics(db, event)

        assert stats["registrations"] == 3
        assert stats["sales"] == 0
        assert stats["revenue"] == 600
        assert stats["attendance"] == 0
