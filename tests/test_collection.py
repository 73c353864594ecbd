"""Tests for paperdb.engine.collection — state machine, instant loading, documents."""

import asyncio
import json

import pytest

from paperdb.db.blobstore import MemoryBlobStore
from paperdb.documents.document import PRELOAD_DOCUMENT_ID, Document
from paperdb.engine.collection import CLOSED, READY, UNREADY, Collection
from paperdb.engine.errors import (
    AlreadyReadyError,
    BlobNotFoundError,
    CollectionClosedError,
    EntryNotFoundError,
    InvalidManifestError,
    InvalidPayloadError,
    InvalidPreloadEntryError,
    NoPreloadDocumentError,
    PreloadTypeMismatchError,
    UnknownDoctypeError,
    WriteRejectedError,
)
from paperdb.security.access import const_doctype, const_user
from paperdb.security.preload import build_entry, canonical_json
from paperdb.types.date import PaperDBDate, PaperDBTimestamp

DATE_2020 = {"type": "date", "iso8601": "2020-01-01T00:00:00.000Z"}


async def _put_manifest(db, meta=None, name="paperdb", type="paperdb:logstore"):
    manifest = {"name": name, "type": type, "accessController": "/paperdb", "meta": meta or {}}
    return await db.files.put(canonical_json(manifest))


class TestConfiguration:

    def test_new_collection_is_unready(self, db):
        collection = db.collection("abc")
        assert collection.state == UNREADY
        assert collection.doctype is None
        assert collection.access_controllers == (const_doctype,)

    def test_setters_chain(self, db):
        collection = db.collection("abc")
        assert collection.set_doctype("date") is collection
        assert collection.set_access_controllers([const_user]) is collection
        assert collection.doctype == "date"
        assert collection.access_controllers == (const_user,)

    def test_access_controllers_must_be_sequence(self, db):
        with pytest.raises(TypeError):
            db.collection("abc").set_access_controllers(const_user)

    def test_unknown_doctype(self, db):
        with pytest.raises(UnknownDoctypeError):
            db.collection("abc", doctype="nope")

    @pytest.mark.asyncio
    async def test_frozen_after_ready(self, db):
        collection = await db.create_collection(doctype="date")
        with pytest.raises(AlreadyReadyError):
            collection.set_doctype("timestamp")
        with pytest.raises(AlreadyReadyError):
            collection.set_access_controllers([const_user])


class TestInstantLoad:

    @pytest.mark.asyncio
    async def test_date_preload_scenario(self, db, identity_x):
        created = await db.create_collection(
            doctype="date",
            metainfo={"title": "Dates", "tags": ["a"]},
            preload_doc=DATE_2020,
        )

        collection = db.collection(created.id, doctype="date")
        result = await collection.instant_load()

        assert collection.state == UNREADY
        assert result.metainfo == {"title": "Dates", "tags": ["a"]}
        doc = result.preload_document
        assert doc.id == PRELOAD_DOCUMENT_ID
        assert doc.data() == PaperDBDate.parse("2020-01-01T00:00:00.000Z")
        assert doc.user_id() == identity_x.user_id()

    @pytest.mark.asyncio
    async def test_without_preload(self, db):
        collection_id = await _put_manifest(db, {"metainfo": {"a": 1}})
        result = await db.collection(collection_id).instant_load()
        assert result.metainfo == {"a": 1}
        assert result.preload_document is None

    @pytest.mark.asyncio
    async def test_pins_manifest_without_blocking(self, db):
        collection_id = await _put_manifest(db)
        await db.collection(collection_id).instant_load()
        await asyncio.sleep(0)
        assert db.files.is_pinned(collection_id)

    @pytest.mark.asyncio
    async def test_wrong_manifest_type(self, db):
        collection_id = await _put_manifest(db, type="eventlog")
        with pytest.raises(InvalidManifestError):
            await db.collection(collection_id).instant_load()

    @pytest.mark.asyncio
    async def test_not_json(self, db):
        collection_id = await db.files.put(b"\xff\xfe not json")
        with pytest.raises(InvalidManifestError):
            await db.collection(collection_id).instant_load()

    @pytest.mark.asyncio
    async def test_missing_manifest(self, db):
        with pytest.raises(BlobNotFoundError):
            await db.collection("missing").instant_load()

    @pytest.mark.asyncio
    async def test_partial_preload_entry(self, db):
        collection_id = await _put_manifest(db, {"preload": {"payload": DATE_2020}})
        with pytest.raises(InvalidPreloadEntryError, match="partial"):
            await db.collection(collection_id).instant_load()

    @pytest.mark.asyncio
    async def test_malformed_preload_entry(self, db):
        collection_id = await _put_manifest(db, {"preload": {"payload": "not an object"}})
        with pytest.raises(InvalidPreloadEntryError):
            await db.collection(collection_id).instant_load()

    @pytest.mark.asyncio
    async def test_bad_preload_signature(self, db, identity_x):
        wire = build_entry(DATE_2020, identity_x).to_wire()
        wire["payload"] = {"type": "date", "iso8601": "1999-01-01T00:00:00.000Z"}
        collection_id = await _put_manifest(db, {"preload": wire})
        with pytest.raises(InvalidPreloadEntryError, match="signature"):
            await db.collection(collection_id).instant_load()

    @pytest.mark.asyncio
    async def test_preload_type_mismatch(self, db, identity_x):
        wire = build_entry({"type": "timestamp", "ms": 1}, identity_x).to_wire()
        collection_id = await _put_manifest(db, {"preload": wire})
        with pytest.raises(PreloadTypeMismatchError):
            await db.collection(collection_id, doctype="date").instant_load()

    @pytest.mark.asyncio
    async def test_metainfo(self, db):
        collection = await db.create_collection(metainfo={"title": "t"})
        assert await collection.metainfo() == {"title": "t"}


class TestReady:

    @pytest.mark.asyncio
    async def test_concurrent_ready_opens_once(self, db):
        collection_id = await _put_manifest(db)
        collection = db.collection(collection_id)

        await asyncio.gather(*(collection.ready() for _ in range(10)))

        assert collection.state == READY
        assert db.log_backend.open_count == 1

    @pytest.mark.asyncio
    async def test_ready_is_idempotent(self, db):
        collection = await db.create_collection()
        await collection.ready()
        await collection.ready()
        assert db.log_backend.open_count == 1

    @pytest.mark.asyncio
    async def test_failed_ready_can_retry(self, db):
        collection = db.collection("not-yet-published")
        with pytest.raises(BlobNotFoundError):
            await collection.ready()
        assert collection.state == UNREADY

        # the manifest shows up later under the same id
        manifest = {"name": "paperdb", "type": "paperdb:logstore", "accessController": "/paperdb", "meta": {}}
        db.files._blobs["not-yet-published"] = json.dumps(manifest).encode("utf-8")
        await collection.ready()
        assert collection.state == READY

    @pytest.mark.asyncio
    async def test_close(self, db):
        collection = await db.create_collection()
        await collection.close()
        assert collection.state == CLOSED
        with pytest.raises(CollectionClosedError):
            await collection.instant_load()
        with pytest.raises(CollectionClosedError):
            await collection.ready()

    @pytest.mark.asyncio
    async def test_close_unready(self, db):
        collection = db.collection("abc")
        await collection.close()
        assert collection.state == CLOSED


class TestDocuments:

    @pytest.mark.asyncio
    async def test_add_and_doc(self, db, identity_x):
        collection = await db.create_collection(doctype="date")
        date = PaperDBDate.parse("2021-06-01T12:00:00.000Z")

        doc = await collection.add(date)

        assert isinstance(doc, Document)
        assert doc.data() == date
        assert doc.user_id() == identity_x.user_id()
        assert (await collection.doc(doc.id)).payload == date.to_typed_object()

    @pytest.mark.asyncio
    async def test_add_plain_value_uses_doctype_converter(self, db):
        from datetime import datetime, timezone

        collection = await db.create_collection(doctype="date")
        doc = await collection.add(datetime(2020, 1, 1, tzinfo=timezone.utc))
        assert doc.payload == DATE_2020

    @pytest.mark.asyncio
    async def test_add_typed_object_and_document(self, db):
        collection = await db.create_collection(doctype="date")
        first = await collection.add(dict(DATE_2020))
        second = await collection.add(first)
        assert second.payload == first.payload
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_add_awaitable(self, db):
        collection = await db.create_collection(doctype="date")

        async def later():
            return PaperDBDate.parse("2020-01-01T00:00:00.000Z")

        doc = await collection.add(later())
        assert doc.payload == DATE_2020

    @pytest.mark.asyncio
    async def test_add_not_a_typed_object(self, db):
        collection = await db.create_collection(doctype="date")
        with pytest.raises(InvalidPayloadError):
            await collection.add({"iso8601": "2020-01-01T00:00:00.000Z"})

    @pytest.mark.asyncio
    async def test_add_wrong_type_rejected(self, db):
        collection = await db.create_collection(doctype="date")
        with pytest.raises(WriteRejectedError):
            await collection.add(PaperDBTimestamp(1))
        assert await collection.get_all() == []

    @pytest.mark.asyncio
    async def test_doctype_from_preload(self, db):
        collection = await db.create_collection(preload_doc=DATE_2020)
        assert collection.doctype is None
        await collection.add(PaperDBDate.utcnow_ms())
        with pytest.raises(WriteRejectedError):
            await collection.add(PaperDBTimestamp(1))

    @pytest.mark.asyncio
    async def test_no_doctype_accepts_any_type(self, db):
        collection = await db.create_collection()
        await collection.add(PaperDBTimestamp(1))
        await collection.add(PaperDBDate.utcnow_ms())
        assert len(await collection.get_all()) == 2

    @pytest.mark.asyncio
    async def test_plain_value_without_doctype(self, db):
        collection = await db.create_collection()
        with pytest.raises(InvalidPayloadError, match="no doctype"):
            await collection.add(object())

    @pytest.mark.asyncio
    async def test_get_all_preload_first(self, db):
        collection = await db.create_collection(doctype="date", preload_doc=DATE_2020)
        added = [
            await collection.add(PaperDBDate.parse(f"2021-0{m}-01T00:00:00.000Z"))
            for m in (1, 2, 3)
        ]

        docs = await collection.get_all()

        assert docs[0].id == PRELOAD_DOCUMENT_ID
        assert [d.id for d in docs[1:]] == [d.id for d in added]

    @pytest.mark.asyncio
    async def test_get_all_without_preload(self, db):
        collection = await db.create_collection(doctype="date")
        doc = await collection.add(PaperDBDate.utcnow_ms())
        assert [d.id for d in await collection.get_all()] == [doc.id]

    @pytest.mark.asyncio
    async def test_preload_doc(self, db):
        collection = await db.create_collection(doctype="date", preload_doc=DATE_2020)
        doc = await collection.doc(PRELOAD_DOCUMENT_ID)
        assert doc.payload == DATE_2020

    @pytest.mark.asyncio
    async def test_no_preload_doc(self, db):
        collection = await db.create_collection(doctype="date")
        with pytest.raises(NoPreloadDocumentError):
            await collection.doc(PRELOAD_DOCUMENT_ID)

    @pytest.mark.asyncio
    async def test_unknown_doc(self, db):
        collection = await db.create_collection(doctype="date")
        with pytest.raises(EntryNotFoundError):
            await collection.doc("0" * 64)

    @pytest.mark.asyncio
    async def test_const_user_with_preload(self, make_db, identity_x, identity_y, network):
        blobs = MemoryBlobStore()
        owner = make_db(identity_x, network, blobs)
        intruder = make_db(identity_y, network, blobs)

        created = await owner.create_collection(
            doctype="date", preload_doc=DATE_2020, access_controllers=[const_doctype, const_user],
        )
        await created.add(PaperDBDate.utcnow_ms())

        foreign = intruder.collection(created.id, doctype="date", access_controllers=[const_doctype, const_user])
        with pytest.raises(WriteRejectedError):
            await foreign.add(PaperDBDate.utcnow_ms())


class TestFailOpen:

    @staticmethod
    def _raising(collection, db):
        def allow(entry):
            raise RuntimeError("controller bug")
        return allow

    @pytest.mark.asyncio
    async def test_raising_controller_admits_when_fail_open(self, make_db, identity_x):
        db = make_db(identity_x, fail_open=True)
        collection = await db.create_collection(access_controllers=[self._raising])
        doc = await collection.add(dict(DATE_2020))
        assert doc.payload == DATE_2020

    @pytest.mark.asyncio
    async def test_raising_controller_rejects_when_fail_closed(self, make_db, identity_x):
        db = make_db(identity_x, fail_open=False)
        collection = await db.create_collection(access_controllers=[self._raising])
        with pytest.raises(WriteRejectedError):
            await collection.add(dict(DATE_2020))


class TestEvents:

    @pytest.mark.asyncio
    async def test_on_snapshot_and_on_peer(self, make_db, identity_x, identity_y, network):
        blobs = MemoryBlobStore()
        alice = make_db(identity_x, network, blobs)
        bob = make_db(identity_y, network, blobs)

        mine = await alice.create_collection(doctype="date")
        peers = []
        await mine.on_peer(peers.append)

        theirs = bob.collection(mine.id, doctype="date")
        snapshots = []
        unsubscribe = await theirs.on_snapshot(lambda address: snapshots.append(address))
        assert peers == [bob.log_backend.peer_id]

        doc = await mine.add(PaperDBDate.utcnow_ms())

        assert len(snapshots) == 1
        assert [d.id for d in await theirs.get_all()] == [doc.id]

        unsubscribe()
        await mine.add(PaperDBDate.utcnow_ms())
        assert len(snapshots) == 1
        assert len(await theirs.get_all()) == 2

    @pytest.mark.asyncio
    async def test_local_add_does_not_emit_snapshot(self, db):
        collection = await db.create_collection(doctype="date")
        snapshots = []
        await collection.on_snapshot(snapshots.append)
        await collection.add(PaperDBDate.utcnow_ms())
        assert snapshots == []


class TestCollectionRef:

    def test_to_typed_object(self, db):
        assert db.collection("abc").to_typed_object() == {"type": "collection-ref", "id": "abc"}

    def test_round_trip_through_registry(self, db):
        original = db.collection("abc", doctype="date")
        decoded = db.registry.decode(original.to_typed_object(), db)
        assert isinstance(decoded, Collection)
        assert decoded == original
        assert decoded.doctype == "date"
        assert decoded.db is db
