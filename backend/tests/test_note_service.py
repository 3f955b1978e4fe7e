"""
CodeSafe Backend — Note Service Tests
=======================================

What:  Tests for note creation/opening, content saves, the PIN lifecycle and
       destroying a note with its attachments.
How:   Real schema on in-memory SQLite, fake storage gateway. Steps that
       set up state commit, as the request dependency would.

Test Strategy:
    ✅ Duplicate create fails; open-or-create never duplicates
    ✅ Save then reload by code returns the saved content
    ✅ validate_pin: unlocked accepts anything, locked only the exact PIN
    ✅ PIN set / change / remove rules and their error messages
    ✅ Destroy with a failing remote delete still removes every row and
       logs the failure instead of raising
    ✅ Whitespace-only PINs are never stored
"""

import logging
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from codesafe.exceptions import (
    DatabaseError,
    InvalidPinError,
    NoteAlreadyExistsError,
    ValidationError,
)
from codesafe.models.note import Attachment, Note
from codesafe.services.note_access import (
    AccessState,
    NoteAccess,
    PinVerificationStore,
    require_access,
)
from codesafe.services.note_service import note_service


PNG_HEADER = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x02\x00\x00\x00"


async def count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestCreateAndOpen:

    @pytest.mark.asyncio
    async def test_create_strips_code_and_starts_unlocked(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "  shopping  ", pin_store)
        assert access.code == "shopping"
        assert access.note.content == ""
        assert not access.note.has_pin
        assert access.note.pin_version == 0

    @pytest.mark.asyncio
    async def test_duplicate_create_fails(self, db_session, pin_store):
        await note_service.create_note(db_session, "shopping", pin_store)
        await db_session.commit()

        with pytest.raises(NoteAlreadyExistsError):
            await note_service.create_note(db_session, "shopping", pin_store)

        assert await count(db_session, Note) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", [None, "", "   "])
    async def test_blank_code_rejected(self, db_session, pin_store, code):
        with pytest.raises(ValidationError, match="enter a code"):
            await note_service.create_note(db_session, code, pin_store)

    @pytest.mark.asyncio
    async def test_overlong_code_rejected(self, db_session, pin_store):
        with pytest.raises(ValidationError, match="at most 500"):
            await note_service.create_note(db_session, "x" * 501, pin_store)

    @pytest.mark.asyncio
    async def test_open_creates_then_reuses(self, db_session, pin_store):
        decision, created = await note_service.open_note(db_session, "diary", pin_store)
        await db_session.commit()
        assert created
        assert decision.granted

        again, created_again = await note_service.open_note(db_session, "diary", pin_store)
        assert not created_again
        assert again.access.note_id == decision.access.note_id
        assert await count(db_session, Note) == 1

    @pytest.mark.asyncio
    async def test_open_locked_note_from_new_session(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.set_pin(db_session, access, "4821", "4821")
        await db_session.commit()

        decision, created = await note_service.open_note(
            db_session, "diary", PinVerificationStore({})
        )
        assert not created
        assert decision.state is AccessState.NEEDS_VERIFICATION

    @pytest.mark.asyncio
    async def test_lookups(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await db_session.commit()
        assert (await note_service.get_note_by_code(db_session, "diary")).id == access.note_id
        assert await note_service.get_note_by_code(db_session, "") is None
        assert (await note_service.get_note_by_id(db_session, access.note_id)).code == "diary"
        assert await note_service.get_note_by_id(db_session, uuid.uuid4()) is None


class TestContent:

    @pytest.mark.asyncio
    async def test_save_then_reload_by_code(self, db_session, session_factory, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.save_content(db_session, access, "Dear diary,\nit rained.")
        await db_session.commit()

        async with session_factory() as other:
            note = await note_service.get_note_by_code(other, "diary")
            assert note.content == "Dear diary,\nit rained."

    @pytest.mark.asyncio
    async def test_save_none_clears_content(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.save_content(db_session, access, "text")
        note = await note_service.save_content(db_session, access, None)
        assert note.content == ""

    @pytest.mark.asyncio
    async def test_content_limit(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.save_content(db_session, access, "a" * 50_000)
        with pytest.raises(ValidationError, match="at most 50000"):
            await note_service.save_content(db_session, access, "a" * 50_001)

    @pytest.mark.asyncio
    async def test_database_failure_is_wrapped(self, mock_db_session, pin_store):
        note = Note(id=uuid.uuid4(), code="diary", content="", pin=None, pin_version=0)
        access = NoteAccess(note=note, store=pin_store)
        failure = OperationalError("UPDATE notes ...", {}, Exception("disk I/O error"))
        mock_db_session.flush.side_effect = failure

        with pytest.raises(DatabaseError) as exc_info:
            await note_service.save_content(mock_db_session, access, "hello")

        assert exc_info.value.__cause__ is failure
        assert exc_info.value.context["operation"] == "save note content"
        assert "try again" in exc_info.value.message


class TestPinLifecycle:

    @pytest.mark.asyncio
    async def test_set_pin_encrypts_and_verifies_session(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        note = await note_service.set_pin(db_session, access, "4821", "4821")

        assert note.has_pin
        assert note.pin != "4821"
        assert note.pin_version == 1
        assert pin_store.is_verified(note)

    @pytest.mark.asyncio
    async def test_set_then_validate(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.set_pin(db_session, access, "4821", "4821")
        await db_session.commit()

        assert await note_service.validate_pin(db_session, access.note_id, "4821")
        assert not await note_service.validate_pin(db_session, access.note_id, "1234")
        assert not await note_service.validate_pin(db_session, access.note_id, None)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pin", ["4821", " 4821", "pass phrase", "0000000000"])
    async def test_every_accepted_pin_validates(self, db_session, pin_store, pin):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.set_pin(db_session, access, pin, pin)
        await db_session.commit()

        assert await note_service.validate_pin(db_session, access.note_id, pin)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pin", ["    ", "\t\t\t\t", "        "])
    async def test_whitespace_only_pin_rejected(self, db_session, pin_store, pin):
        access = await note_service.create_note(db_session, "diary", pin_store)
        with pytest.raises(ValidationError, match="cannot be blank"):
            await note_service.set_pin(db_session, access, pin, pin)
        assert not access.note.has_pin

        await note_service.set_pin(db_session, access, "4821", "4821")
        with pytest.raises(ValidationError, match="cannot be blank"):
            await note_service.update_pin(db_session, access, "4821", pin, pin)
        assert await note_service.validate_pin(db_session, access.note_id, "4821")

    @pytest.mark.asyncio
    async def test_unlocked_note_validates_any_pin(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        assert await note_service.validate_pin(db_session, access.note_id, "whatever")
        assert await note_service.validate_pin(db_session, access.note_id, "")

    @pytest.mark.asyncio
    async def test_unknown_note_never_validates(self, db_session):
        assert not await note_service.validate_pin(db_session, uuid.uuid4(), "4821")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "pin, confirm, message",
        [
            ("", "4821", "are required"),
            ("4821", None, "are required"),
            ("4821", "4822", "do not match"),
            ("482", "482", "at least 4"),
        ],
    )
    async def test_set_pin_input_rules(self, db_session, pin_store, pin, confirm, message):
        access = await note_service.create_note(db_session, "diary", pin_store)
        with pytest.raises(ValidationError, match=message):
            await note_service.set_pin(db_session, access, pin, confirm)
        assert not access.note.has_pin

    @pytest.mark.asyncio
    async def test_set_pin_twice_rejected(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.set_pin(db_session, access, "4821", "4821")
        with pytest.raises(ValidationError, match="change PIN"):
            await note_service.set_pin(db_session, access, "9999", "9999")

    @pytest.mark.asyncio
    async def test_update_pin(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.set_pin(db_session, access, "4821", "4821")

        note = await note_service.update_pin(db_session, access, "4821", "9999", "9999")

        assert note.pin_version == 2
        assert await note_service.validate_pin(db_session, note.id, "9999")
        assert not await note_service.validate_pin(db_session, note.id, "4821")
        assert pin_store.is_verified(note)

    @pytest.mark.asyncio
    async def test_update_pin_wrong_current(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.set_pin(db_session, access, "4821", "4821")
        with pytest.raises(InvalidPinError, match="Current PIN is incorrect"):
            await note_service.update_pin(db_session, access, "0000", "9999", "9999")

    @pytest.mark.asyncio
    async def test_update_pin_rules(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        with pytest.raises(ValidationError, match="has no PIN"):
            await note_service.update_pin(db_session, access, "4821", "9999", "9999")

        await note_service.set_pin(db_session, access, "4821", "4821")
        with pytest.raises(ValidationError, match="All fields are required"):
            await note_service.update_pin(db_session, access, "4821", "", "9999")
        with pytest.raises(ValidationError, match="New PINs do not match"):
            await note_service.update_pin(db_session, access, "4821", "9999", "9998")
        with pytest.raises(ValidationError, match="at least 4"):
            await note_service.update_pin(db_session, access, "4821", "99", "99")

    @pytest.mark.asyncio
    async def test_remove_pin(self, db_session, session_data, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.set_pin(db_session, access, "4821", "4821")

        note = await note_service.remove_pin(db_session, access, "4821")

        assert not note.has_pin
        assert note.pin is None
        assert session_data == {}
        assert await note_service.validate_pin(db_session, note.id, "anything")

    @pytest.mark.asyncio
    async def test_remove_pin_rules(self, db_session, pin_store):
        access = await note_service.create_note(db_session, "diary", pin_store)
        await note_service.set_pin(db_session, access, "4821", "4821")
        with pytest.raises(ValidationError, match="current PIN"):
            await note_service.remove_pin(db_session, access, "")
        with pytest.raises(InvalidPinError, match="Cannot unlock"):
            await note_service.remove_pin(db_session, access, "1111")
        assert access.note.has_pin


class TestDestroy:

    async def _note_with_files(self, db, store, attachments, pin=None):
        access = await note_service.create_note(db, "doomed", store)
        if pin:
            await note_service.set_pin(db, access, pin, pin)
        await attachments.upload(db, access, "a.pdf", b"%PDF-1.4 a")
        await attachments.upload(db, access, "b.png", PNG_HEADER)
        await attachments.upload(db, access, "c.txt", b"packing list")
        await db.commit()
        return access

    @pytest.mark.asyncio
    async def test_destroy_removes_note_and_attachments(
        self, db_session, pin_store, attachment_service, fake_gateway
    ):
        access = await self._note_with_files(db_session, pin_store, attachment_service)

        await note_service.destroy_note(db_session, access, None, attachment_service)
        await db_session.commit()

        assert await count(db_session, Note) == 0
        assert await count(db_session, Attachment) == 0
        assert fake_gateway.delete.await_count == 3
        fake_gateway.delete_folder.assert_awaited_once_with("doomed")

    @pytest.mark.asyncio
    async def test_destroy_with_one_failing_remote_delete(
        self, db_session, pin_store, attachment_service, fake_gateway, caplog
    ):
        access = await self._note_with_files(db_session, pin_store, attachment_service)

        async def delete(object_id, category):
            return not object_id.endswith("b.png")

        fake_gateway.delete.side_effect = delete

        with caplog.at_level(logging.WARNING, logger="codesafe.services.attachment_service"):
            await note_service.destroy_note(db_session, access, None, attachment_service)
        await db_session.commit()

        assert await count(db_session, Note) == 0
        assert await count(db_session, Attachment) == 0
        assert fake_gateway.delete.await_count == 3
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "codesafe/test/image/b.png" in warnings[0]

    @pytest.mark.asyncio
    async def test_destroy_survives_raising_provider(
        self, db_session, pin_store, attachment_service, fake_gateway
    ):
        access = await self._note_with_files(db_session, pin_store, attachment_service)
        fake_gateway.delete.side_effect = [False, RuntimeError("provider down"), True]
        fake_gateway.delete_folder.side_effect = RuntimeError("provider down")

        await note_service.destroy_note(db_session, access, None, attachment_service)
        await db_session.commit()

        assert await count(db_session, Note) == 0
        assert await count(db_session, Attachment) == 0

    @pytest.mark.asyncio
    async def test_destroy_locked_note_needs_pin(
        self, db_session, session_data, pin_store, attachment_service
    ):
        access = await self._note_with_files(db_session, pin_store, attachment_service, pin="4821")

        with pytest.raises(ValidationError, match="enter the PIN"):
            await note_service.destroy_note(db_session, access, None, attachment_service)
        with pytest.raises(InvalidPinError):
            await note_service.destroy_note(db_session, access, "0000", attachment_service)
        assert await count(db_session, Attachment) == 3

        await note_service.destroy_note(db_session, access, "4821", attachment_service)
        await db_session.commit()
        assert await count(db_session, Note) == 0
        assert session_data == {}

    @pytest.mark.asyncio
    async def test_code_reusable_after_destroy(
        self, db_session, pin_store, attachment_service
    ):
        access = await self._note_with_files(db_session, pin_store, attachment_service)
        await note_service.destroy_note(db_session, access, None, attachment_service)
        await db_session.commit()

        fresh = await note_service.create_note(db_session, "doomed", pin_store)
        assert fresh.note_id != access.note_id
        assert (await require_access(db_session, "doomed", pin_store)).note_id == fresh.note_id
