"""
Tests for result ingestion.

Validates:
- every known field-name variant maps into the canonical results
- confidence aggregates, including the all-zero empty case
- non-object responses fail with an invalid_response cause
- the subject receives a summary of the results
"""

import pytest

from app.jobs.errors import TransientExecutionError
from app.jobs.ingest import ResultIngestor, confidence_stats

from conftest import recognition_response


@pytest.fixture
def ingestor(subjects):
    return ResultIngestor(subjects)


class TestNormalize:

    def test_primary_field_names(self, ingestor, make_job):
        results = ingestor.normalize(recognition_response(), make_job())

        assert [d.type for d in results.detections] == ["door", "extinguisher"]
        assert results.detections[0].bounding_box.width == 30
        assert results.detections[1].bounding_box.height == 4
        assert results.extracted_text[0].text == "SALA 01"
        assert results.layers[0].layer == "A-WALL"
        assert results.layers[0].object_count == 12
        assert results.layers[0].recognized_types == ["wall"]
        assert results.statistics.processing_time_ms == 1530
        assert results.statistics.model_version == "yolo-8.1"

    def test_alternate_field_names(self, ingestor, make_job):
        raw = {
            "detections": [{"label": "sprinkler", "score": 0.6, "bounding_box": {"x": 1, "y": 1, "w": 2, "h": 3}}],
            "ocr_results": ["EXIT", {"value": "1:100", "confidence": 0.8}],
            "layers": [{"name": "E-POWER", "count": 4, "recognizedTypes": ["outlet"]}],
            "compliance_findings": [{"rule_id": "NBR-9077", "status": "compliant"}],
            "metadata": {"scale": "1:100"},
            "processingTimeMs": 800,
            "modelVersion": "v2",
        }

        results = ingestor.normalize(raw, make_job())

        assert results.detections[0].type == "sprinkler"
        assert results.detections[0].confidence == 0.6
        assert results.detections[0].bounding_box.height == 3
        assert [t.text for t in results.extracted_text] == ["EXIT", "1:100"]
        assert results.layers[0].layer == "E-POWER"
        assert results.layers[0].object_count == 4
        assert results.layers[0].recognized_types == ["outlet"]
        assert results.compliance[0].rule == "NBR-9077"
        assert results.metadata == {"scale": "1:100"}
        assert results.statistics.processing_time_ms == 800
        assert results.statistics.model_version == "v2"

    def test_objects_and_text_regions_variants(self, ingestor, make_job):
        raw = {
            "objects": [{"type": "column", "confidence": 0.5}],
            "text_regions": [{"text": "A1"}],
            "layer_analysis": [{"layer": "S-COLS", "object_count": 2, "recognized_types": ["column"]}],
            "compliance_analysis": [{"rule": "R1"}],
        }

        results = ingestor.normalize(raw, make_job())

        assert results.detections[0].type == "column"
        assert results.extracted_text[0].text == "A1"
        assert results.layers[0].layer == "S-COLS"
        assert results.compliance[0].rule == "R1"

    def test_empty_detections_give_zero_confidence(self, ingestor, make_job):
        results = ingestor.normalize({}, make_job())

        stats = results.statistics
        assert stats.count == 0
        assert (stats.confidence_min, stats.confidence_avg, stats.confidence_max) == (0.0, 0.0, 0.0)
        assert stats.model_version == "yolo_v8"

    def test_confidence_aggregates(self, ingestor, make_job):
        stats = ingestor.normalize(recognition_response(), make_job()).statistics

        assert stats.count == 2
        assert stats.confidence_min == 0.7
        assert stats.confidence_max == 0.9
        assert stats.confidence_avg == pytest.approx(0.8)

    @pytest.mark.parametrize("raw", [["a", "b"], "done", None, 42])
    def test_non_object_response_fails(self, ingestor, make_job, raw):
        with pytest.raises(TransientExecutionError) as exc:
            ingestor.normalize(raw, make_job())
        assert exc.value.cause == "invalid_response"

    def test_confidence_stats_empty(self):
        assert confidence_stats([]) == {"confidence_min": 0.0, "confidence_avg": 0.0, "confidence_max": 0.0}


class TestPublish:

    @pytest.mark.asyncio
    async def test_writes_summary_to_subject(self, ingestor, subjects, make_job):
        job = make_job()
        results = ingestor.normalize(recognition_response(), job)

        await ingestor.publish(job, results)

        subject = await subjects.get_by_id("plan-1", job.tenant_id)
        summary = subject.ai_processing
        assert summary["status"] == "completed"
        assert len(summary["detected_objects"]) == 2
        assert summary["layer_analysis"][0]["layer"] == "A-WALL"
        assert summary["text_recognition"][0]["text"] == "SALA 01"
        assert summary["processing_time_ms"] == 1530
        assert "completed_at" in summary
