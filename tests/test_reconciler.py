"""Tests for transcription_ingest.reconcile.reconciler module."""

import json
from dataclasses import replace
from unittest.mock import AsyncMock, patch

import pytest

from transcription_ingest.ingest.disposition import FileDisposition
from transcription_ingest.reconcile.reconciler import (
    ArtifactKind,
    ResultReconciler,
    detect_artifact_kind,
    failed_transcriptions,
)
from transcription_ingest.utils.errors import ReconciliationFormatError, StorageError

from .conftest import STORAGE_HOST, audio_url

RESULTS = "json-result-output"
TRANSCRIPT = {
    "source": audio_url("audio1.wav") + "?sig=abc",
    "timestamp": "2026-03-01T12:00:00Z",
    "durationInTicks": 41200000,
    "combinedRecognizedPhrases": [{"channel": 0, "display": "Hello world."}],
    "recognizedPhrases": [{"channel": 0, "offsetInTicks": 0}],
}


def _report(details, succeeded=0):
    failed = sum(1 for d in details if d["status"] == "Failed")
    return {
        "successfulTranscriptionsCount": succeeded,
        "failedTranscriptionsCount": failed,
        "details": details,
    }


def _failed_detail(file_name, message="Unsupported format", kind="InvalidData"):
    return {
        "source": audio_url(file_name),
        "status": "Failed",
        "errorMessage": message,
        "errorKind": kind,
    }


def _reconciler(store, settings):
    return ResultReconciler(store, FileDisposition(store, settings), settings)


class TestDetectArtifactKind:
    """Tests for detect_artifact_kind()."""

    def test_report(self):
        """Integer counts identify a job report."""
        assert detect_artifact_kind(_report([])) is ArtifactKind.JOB_REPORT

    def test_transcript(self):
        """Transcript fields identify a transcript."""
        assert detect_artifact_kind(TRANSCRIPT) is ArtifactKind.TRANSCRIPT

    @pytest.mark.parametrize(
        "document",
        [
            {"foo": 1},
            [],
            {"successfulTranscriptionsCount": "1", "failedTranscriptionsCount": 0},
            {"successfulTranscriptionsCount": True, "failedTranscriptionsCount": 0},
            {"source": "x", "recognizedPhrases": []},
            {
                "successfulTranscriptionsCount": 0,
                "failedTranscriptionsCount": 1,
                "details": 5,
            },
        ],
    )
    def test_unknown_shapes_raise(self, document):
        """Anything else is a format error."""
        with pytest.raises(ReconciliationFormatError):
            detect_artifact_kind(document)


class TestFailedTranscriptions:
    """Tests for failed_transcriptions()."""

    def test_extracts_failed_entries_case_insensitively(self):
        """Only failed entries are returned, in report order."""
        report = _report(
            [
                _failed_detail("a.wav"),
                {"source": audio_url("b.wav"), "status": "Succeeded"},
                {"source": audio_url("c.wav"), "status": "failed"},
            ]
        )

        failures = failed_transcriptions(report)

        assert [f.file_name for f in failures] == ["a.wav", "c.wav"]
        assert failures[0].container == "audio-input"
        assert failures[1].error_message == "Unknown"
        assert failures[1].error_kind == "Unknown"

    def test_non_list_details_raise(self):
        """Details that are not a list are a format error."""
        with pytest.raises(ReconciliationFormatError):
            failed_transcriptions({"failedTranscriptionsCount": 1, "details": 5})

    def test_diagnostic_text(self):
        """The diagnostic names file, container, message and kind."""
        [failure] = failed_transcriptions(_report([_failed_detail("a.wav")]))
        assert failure.diagnostic == (
            "Transcription a.wav in container audio-input failed with error "
            '"Unsupported format" (InvalidData).'
        )


class TestReconcileTranscript:
    """Tests for reconciling transcripts."""

    @pytest.mark.asyncio
    async def test_transcript_completes_source(self, store, settings):
        """A transcript for audio1.wav writes audio1.wav.json and moves the source."""
        body = json.dumps(TRANSCRIPT)
        store.put(RESULTS, "job_0/audio1.json", body)
        store.put("audio-input", "audio1.wav", b"RIFF")

        result = await _reconciler(store, settings).reconcile(
            f"https://storage.example.com/{RESULTS}/job_0/audio1.json"
        )

        assert result.kind is ArtifactKind.TRANSCRIPT
        assert result.succeeded == ["audio1.wav"]
        assert store.text(RESULTS, "audio1.wav.json") == body
        assert ("audio-processed", "audio1.wav") in store.blobs
        assert ("audio-input", "audio1.wav") not in store.blobs

    @pytest.mark.asyncio
    async def test_bom_is_stripped(self, store, settings):
        """A UTF-8 byte order mark does not break parsing."""
        store.put(RESULTS, "t.json", b"\xef\xbb\xbf" + json.dumps(TRANSCRIPT).encode())
        store.put("audio-input", "audio1.wav", b"RIFF")

        result = await _reconciler(store, settings).reconcile_blob(RESULTS, "t.json")

        assert result.succeeded == ["audio1.wav"]

    @pytest.mark.asyncio
    async def test_reconciling_twice_is_idempotent(self, store, settings):
        """The second pass finds the source already moved and changes nothing else."""
        store.put(RESULTS, "t.json", json.dumps(TRANSCRIPT))
        store.put("audio-input", "audio1.wav", b"RIFF")
        reconciler = _reconciler(store, settings)

        await reconciler.reconcile_blob(RESULTS, "t.json")
        snapshot = dict(store.blobs)
        second = await reconciler.reconcile_blob(RESULTS, "t.json")

        assert second.succeeded == ["audio1.wav"]
        assert store.blobs == snapshot
        assert len(store.moves) == 1


class TestReconcileReport:
    """Tests for reconciling job reports."""

    @pytest.mark.asyncio
    async def test_failed_entries_get_failed_disposition(self, store, settings):
        """Each failed entry writes a diagnostic and moves its source to failed."""
        store.put("audio-input", "a.wav", b"RIFF")
        store.put("audio-input", "b.wav", b"RIFF")
        report = _report(
            [
                _failed_detail("a.wav"),
                {"source": audio_url("b.wav"), "status": "Succeeded"},
            ],
            succeeded=1,
        )
        store.put(RESULTS, "job_0/report.json", json.dumps(report))

        result = await _reconciler(store, settings).reconcile_blob(
            RESULTS, "job_0/report.json"
        )

        assert result.kind is ArtifactKind.JOB_REPORT
        assert result.failed == ["a.wav"]
        assert "Unsupported format" in store.text("error-report", "a.wav.txt")
        assert ("audio-failed", "a.wav") in store.blobs
        assert ("audio-input", "b.wav") in store.blobs

    @pytest.mark.asyncio
    async def test_report_without_failures_touches_nothing(self, store, settings):
        """A report with zero failures makes no writes and no moves."""
        store.put("audio-input", "a.wav", b"RIFF")
        report = _report(
            [{"source": audio_url("a.wav"), "status": "Succeeded"}], succeeded=1
        )
        store.put(RESULTS, "report.json", json.dumps(report))

        result = await _reconciler(store, settings).reconcile_blob(RESULTS, "report.json")

        assert result.kind is ArtifactKind.JOB_REPORT
        assert store.writes == []
        assert store.moves == []

    @pytest.mark.asyncio
    async def test_storage_failure_marks_incomplete(self, store, settings):
        """A disposition that cannot complete keeps the artifact."""
        store.put("audio-input", "a.wav", b"RIFF")
        store.put(RESULTS, "report.json", json.dumps(_report([_failed_detail("a.wav")])))
        store.fail_writes_to.add("error-report")
        deleting = replace(settings, delete_result_artifacts=True)

        result = await _reconciler(store, deleting).reconcile_blob(RESULTS, "report.json")

        assert result.incomplete == ["a.wav"]
        assert not result.artifact_deleted
        assert (RESULTS, "report.json") in store.blobs
        assert ("audio-input", "a.wav") in store.blobs


class TestReconcileArtifacts:
    """Tests for artifact handling."""

    @pytest.mark.asyncio
    async def test_unknown_shape_is_left_in_place(self, store, settings):
        """Unrecognized artifacts change nothing."""
        store.put(RESULTS, "odd.json", json.dumps({"foo": 1}))
        deleting = replace(settings, delete_result_artifacts=True)

        result = await _reconciler(store, deleting).reconcile_blob(RESULTS, "odd.json")

        assert result.kind is None
        assert (RESULTS, "odd.json") in store.blobs
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_invalid_json_is_left_in_place(self, store, settings):
        """Unparseable artifacts change nothing."""
        store.put(RESULTS, "bad.json", "{not json")

        result = await _reconciler(store, settings).reconcile_blob(RESULTS, "bad.json")

        assert result.kind is None
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_undecodable_bytes_are_left_in_place(self, store, settings):
        """Artifacts that are not UTF-8 change nothing."""
        store.put(RESULTS, "bin.json", b"\xff\xfe{not utf8")
        deleting = replace(settings, delete_result_artifacts=True)

        result = await _reconciler(store, deleting).reconcile_blob(RESULTS, "bin.json")

        assert result.kind is None
        assert (RESULTS, "bin.json") in store.blobs
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_report_with_scalar_details_is_left_in_place(self, store, settings):
        """A report whose details is not a list changes nothing."""
        report = {
            "successfulTranscriptionsCount": 0,
            "failedTranscriptionsCount": 1,
            "details": 5,
        }
        store.put(RESULTS, "report.json", json.dumps(report))

        result = await _reconciler(store, settings).reconcile(
            f"{STORAGE_HOST}/{RESULTS}/report.json"
        )

        assert result.kind is None
        assert store.writes == []
        assert store.moves == []

    @pytest.mark.asyncio
    async def test_artifact_deleted_when_configured(self, store, settings):
        """Fully reconciled artifacts are deleted when enabled."""
        store.put(RESULTS, "t.json", json.dumps(TRANSCRIPT))
        store.put("audio-input", "audio1.wav", b"RIFF")
        deleting = replace(settings, delete_result_artifacts=True)

        result = await _reconciler(store, deleting).reconcile_blob(RESULTS, "t.json")

        assert result.artifact_deleted
        assert (RESULTS, "t.json") not in store.blobs
        assert (RESULTS, "audio1.wav.json") in store.blobs

    @pytest.mark.asyncio
    async def test_transient_read_failure_is_retried(self, store, settings):
        """A read that fails once succeeds on the retry."""
        store.put(RESULTS, "t.json", json.dumps(TRANSCRIPT))
        store.put("audio-input", "audio1.wav", b"RIFF")
        store.fail_reads = 1

        with patch("transcription_ingest.utils.retry.asyncio.sleep", new=AsyncMock()):
            result = await _reconciler(store, settings).reconcile_blob(RESULTS, "t.json")

        assert result.succeeded == ["audio1.wav"]

    @pytest.mark.asyncio
    async def test_missing_artifact_raises_storage_error(self, store, settings):
        """A missing artifact raises after the retries are spent."""
        with patch("transcription_ingest.utils.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(StorageError):
                await _reconciler(store, settings).reconcile_blob(RESULTS, "none.json")
