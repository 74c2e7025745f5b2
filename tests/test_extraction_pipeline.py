"""
End-to-end tests for extraction_pipeline.py.
"""

import json

import pytest

from config import Settings
from extraction_pipeline import CoaExtractor, ExtractionConfig, extract_document, main
from models import ThcSource, Unit

# ============================================================================
# Full Extraction
# ============================================================================


class TestExtract:
    def test_wedding_cake(self, extractor, wedding_cake_text):
        result = extractor.extract(wedding_cake_text)
        assert result.strain_name == "Wedding Cake"
        assert result.type == "Hybrid"
        assert result.dominant_terpene == "myrcene"
        assert result.other_terpenes == ["limonene", "caryophyllene"]
        assert result.thc.total_percent == 23.0
        assert result.thc.source == ThcSource.DIRECT

    def test_wire_format_is_camel_case(self, wedding_cake_text):
        payload = extract_document(wedding_cake_text).model_dump(mode="json", by_alias=True)
        assert payload["strainName"] == "Wedding Cake"
        assert payload["dominantTerpene"] == "myrcene"
        assert payload["otherTerpenes"] == ["limonene", "caryophyllene"]
        assert payload["thc"]["totalPercent"] == 23.0
        assert payload["thc"]["source"] == "direct"

    @pytest.mark.parametrize("text", ["", None])
    def test_empty_document(self, extractor, text):
        result = extractor.extract(text)
        assert result.strain_name is None
        assert result.type is None
        assert result.dominant_terpene is None
        assert result.other_terpenes == []
        assert result.thc.total_percent is None
        assert result.thc.source == ThcSource.NONE

    def test_partial_document(self, extractor):
        result = extractor.extract("Type: Concentrate\nTHCA: 80%")
        assert result.type == "Concentrate"
        assert result.dominant_terpene is None
        assert result.thc.source == ThcSource.COMPUTED
        assert result.thc.total_percent == 70.16

    def test_strain_from_locator(self, extractor):
        result = extractor.extract("Myrcene 1%", "https://lab.example.com/coa/blue-dream.pdf")
        assert result.strain_name == "Blue Dream"

    def test_terpene_limit(self, wedding_cake_text):
        result = CoaExtractor(ExtractionConfig(terpene_limit=1)).extract(wedding_cake_text)
        assert result.dominant_terpene == "myrcene"
        assert result.other_terpenes == []

    def test_config_from_settings(self):
        config = ExtractionConfig.from_settings(Settings(terpene_limit=2, preview_lines=5))
        assert config.terpene_limit == 2
        assert config.preview_lines == 5

# ============================================================================
# Terpene Debug Report
# ============================================================================


class TestDebugTerpenes:
    def test_report(self, extractor):
        filler = "\n".join(f"note {i}" for i in range(60))
        text = "Terpene Result (mg/g)\nMyrcene 8.5\nLimonene 4.2\n" + filler
        report = extractor.debug_terpenes(text)
        assert report.default_unit == Unit.MG_PER_G
        assert report.terpenes == ["myrcene", "limonene"]
        assert [r.name for r in report.records] == ["myrcene", "limonene"]
        assert report.records[0].percent == pytest.approx(0.85)
        assert len(report.preview) == 40
        assert report.preview[0] == "Terpene Result (mg/g)"

    def test_empty(self, extractor):
        report = extractor.debug_terpenes("")
        assert report.default_unit is None
        assert report.terpenes == []
        assert report.preview == []

# ============================================================================
# CLI
# ============================================================================


class TestCli:
    def test_prints_result_json(self, tmp_path, capsys):
        path = tmp_path / "blue_dream.txt"
        path.write_text("Myrcene 1.2%\nTotal THC: 20.1%\n", encoding="utf-8")
        assert main([str(path)]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["strainName"] == "Blue Dream"
        assert payload["dominantTerpene"] == "myrcene"
        assert payload["thc"]["totalPercent"] == 20.1

    def test_debug_flag(self, tmp_path, capsys):
        path = tmp_path / "coa.txt"
        path.write_text("Linalool 0.4%\n", encoding="utf-8")
        assert main([str(path), "--debug-terps"]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["terpenes"] == ["linalool"]
        assert payload["preview"] == ["Linalool 0.4%"]

    def test_missing_file(self, tmp_path):
        assert main([str(tmp_path / "missing.txt")]) == 2
