import os
import re
import logging
import threading
from unittest.mock import patch

import pytest
from create_sample_pdf import make_pdf_bytes
from core.errors import ExternalServiceError, ValidationError
from core.pipeline.ingestion import EXTRACTED_PROGRESS, blob_path_for, conversation_blob_prefix, safe_filename, validate_upload
from models.conversation import ConversationStatus
from models.document import ProcessingStatus, UploadedFile

TEN_PAGES = [
    f"Chapter {i + 1}. Photosynthesis converts light energy into chemical energy. "
    f"Chlorophyll in the leaves absorbs sunlight. " * 8
    for i in range(10)
]

def _pdf(name, pages=None):
    return UploadedFile(filename=name, content_type="application/pdf", data=make_pdf_bytes(pages or TEN_PAGES))

def _blob_files(stack):
    found = []
    for root, _, files in os.walk(stack.blob_store.root_path):
        found.extend(files)
    return found

def test_scenario_single_pdf_becomes_ready(stack):
    logging.basicConfig(level=logging.INFO)
    conversation = stack.service.create_conversation("Biology", [_pdf("biology.pdf")], "alice")
    assert conversation.status in (ConversationStatus.processing, ConversationStatus.ready)

    assert stack.service.wait_for_ingestion(conversation.id, timeout=30)

    documents = stack.document_store.list_by_conversation(conversation.id)
    assert len(documents) == 1
    doc = documents[0]
    assert doc.status == ProcessingStatus.completed
    assert doc.progress == 100
    assert doc.chunk_count and doc.chunk_count > 1
    assert doc.character_count and doc.character_count > 1000
    assert len(doc.content_hash) == 64

    assert conversation.status == ConversationStatus.ready
    assert conversation.pending_documents == 0
    handle = stack.collections.get_handle(conversation.collection_name)
    assert handle.count() == doc.chunk_count

def test_scenario_corrupt_pdf_fails_conversation(stack):
    files = [_pdf("good.pdf"), UploadedFile(filename="broken.pdf", data=b"%PDF-1.4 definitely not a pdf")]
    conversation = stack.service.create_conversation("Mixed", files, "alice")
    assert stack.service.wait_for_ingestion(conversation.id, timeout=30)

    docs = {d.filename: d for d in stack.document_store.list_by_conversation(conversation.id)}
    assert docs["broken.pdf"].status == ProcessingStatus.failed
    assert docs["broken.pdf"].error_message

    assert conversation.status == ConversationStatus.failed
    assert "broken.pdf" in conversation.error_message
    # The failed upload's blob is cleaned up, the good one stays.
    assert not any(f.endswith("_broken.pdf") for f in _blob_files(stack))

def test_create_conversation_rejects_bad_uploads_upfront(stack):
    with pytest.raises(ValidationError) as exc_info:
        stack.service.create_conversation("Bad", [UploadedFile(filename="notes.txt", data=b"hello")], "alice")
    assert exc_info.value.code == "INVALID_FILE_TYPE"

    with pytest.raises(ValidationError) as exc_info:
        stack.service.create_conversation("  ", [_pdf("a.pdf")], "alice")
    assert exc_info.value.code == "BLANK_TITLE"

    with pytest.raises(ValidationError):
        stack.service.create_conversation("Nothing", [], "alice")

    assert stack.conversation_store.list_by_owner("alice") == []

def test_validation_codes(stack):
    config = stack.ingestion.config
    cases = [
        (UploadedFile(filename="empty.pdf", data=b""), "EMPTY_FILE"),
        (UploadedFile(filename="image.png", data=b"png"), "INVALID_FILE_TYPE"),
        (UploadedFile(filename="huge.pdf", data=b"x" * (config.max_file_size_mb * 1024 * 1024 + 1)), "FILE_TOO_LARGE"),
    ]
    for upload, code in cases:
        with pytest.raises(ValidationError) as exc_info:
            validate_upload(upload, config)
        assert exc_info.value.code == code

    validate_upload(UploadedFile(filename="REPORT.PDF", data=b"%PDF"), config)

def test_failed_validation_marks_document_and_deletes_blob(stack):
    conversation = stack.conversation_store.create("Direct", "alice", pending_documents=1)
    handle = stack.collections.create_collection(conversation.title, conversation.id)
    conversation.collection_name = handle.name
    stack.state_machine.begin_processing(conversation)

    document = stack.ingestion.process(UploadedFile(filename="empty.pdf", data=b""), conversation)

    assert document.status == ProcessingStatus.failed
    assert "empty" in document.error_message
    assert not stack.blob_store.exists(document.blob_path)
    assert conversation.status == ConversationStatus.failed

def test_pdf_without_text_fails(stack):
    conversation = stack.conversation_store.create("Scans", "alice", pending_documents=1)
    conversation.collection_name = stack.collections.create_collection(conversation.title, conversation.id).name
    stack.state_machine.begin_processing(conversation)

    document = stack.ingestion.process(_pdf("scan.pdf", pages=[""]), conversation)

    assert document.status == ProcessingStatus.failed
    assert "No text" in document.error_message

def test_progress_is_monotonic(stack):
    seen = []
    original_save = stack.document_store.save

    def recording_save(document):
        seen.append(document.progress)
        original_save(document)

    stack.document_store.save = recording_save
    conversation = stack.conversation_store.create("Progress", "alice", pending_documents=1)
    conversation.collection_name = stack.collections.create_collection(conversation.title, conversation.id).name
    stack.state_machine.begin_processing(conversation)

    document = stack.ingestion.process(_pdf("progress.pdf"), conversation)

    assert document.status == ProcessingStatus.completed
    assert seen == sorted(seen)
    assert seen[-1] == 100
    assert 5 in seen and 10 in seen
    assert all(p < 100 for p in seen[:-1])

def test_blob_path_layout():
    path = blob_path_for("alice", 7, "../../etc/Report 2024.pdf", timestamp_ms=1700000000000)
    assert path == "users/alice/conversations/7/1700000000000_Report 2024.pdf"
    assert re.match(r"users/bob/conversations/3/\d+_a\.pdf$", blob_path_for("bob", 3, "a.pdf"))
    assert safe_filename("") == "document.pdf"

def _processing_conversation(stack, title, pending=1):
    conversation = stack.conversation_store.create(title, "alice", pending_documents=pending)
    conversation.collection_name = stack.collections.create_collection(conversation.title, conversation.id).name
    stack.state_machine.begin_processing(conversation)
    return conversation

def test_embedding_failure_midway_fails_document_and_conversation(stack):
    conversation = _processing_conversation(stack, "Flaky embeddings")
    real_embed = stack.embedder.embed
    calls = []

    def flaky_embed(text):
        calls.append(text)
        if len(calls) > 1:
            raise ExternalServiceError("embedding provider", "embed")
        return real_embed(text)

    with patch.object(stack.embedder, "embed", side_effect=flaky_embed):
        document = stack.ingestion.process(_pdf("flaky.pdf"), conversation)

    assert document.status == ProcessingStatus.failed
    assert EXTRACTED_PROGRESS <= document.progress < 100
    assert "embedding provider" in document.error_message
    assert conversation.status == ConversationStatus.failed
    assert "flaky.pdf" in conversation.error_message
    assert not stack.blob_store.exists(document.blob_path)

def test_blob_store_failure_still_fails_conversation(stack):
    conversation = _processing_conversation(stack, "No disk")

    with patch.object(stack.blob_store, "put", side_effect=OSError("disk full")):
        document = stack.ingestion.process(_pdf("report.pdf"), conversation)

    assert document is None
    assert stack.document_store.list_by_conversation(conversation.id, include_inactive=True) == []
    assert conversation.status == ConversationStatus.failed
    assert "blob store failed during put" in conversation.error_message

def _pause(original, started, release):
    def paused(*args):
        started.set()
        assert release.wait(10)
        return original(*args)
    return paused

def _assert_nothing_left(stack, conversation, collection_name):
    assert stack.conversation_store.get(conversation.id) is None
    assert stack.document_store.list_by_conversation(conversation.id, include_inactive=True) == []
    assert not stack.collections.client.collection_exists(collection_name)
    assert stack.blob_store.delete_prefix(conversation_blob_prefix("alice", conversation.id)) == 0

def test_delete_during_extraction_leaves_nothing_behind(stack):
    started, release = threading.Event(), threading.Event()
    extractor = stack.ingestion.extractor
    with patch.object(extractor, "extract_text", side_effect=_pause(extractor.extract_text, started, release)):
        conversation = stack.service.create_conversation("Short lived", [_pdf("notes.pdf")], "alice")
        collection_name = conversation.collection_name
        assert started.wait(10)

        stack.service.delete_conversation(conversation.id, "alice")
        release.set()
        stack.ingestion.shutdown(wait=True)

    _assert_nothing_left(stack, conversation, collection_name)

def test_delete_during_embedding_leaves_nothing_behind(stack):
    started, release = threading.Event(), threading.Event()
    with patch.object(stack.embedder, "embed", side_effect=_pause(stack.embedder.embed, started, release)):
        conversation = stack.service.create_conversation("Short lived", [_pdf("notes.pdf")], "alice")
        collection_name = conversation.collection_name
        assert started.wait(10)

        stack.service.delete_conversation(conversation.id, "alice")
        release.set()
        stack.ingestion.shutdown(wait=True)

    _assert_nothing_left(stack, conversation, collection_name)
    assert stack.state_machine.is_active(conversation.id) is False
