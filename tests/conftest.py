"""
Shared fixtures: sample report text and a default extractor.
"""

import pytest

from extraction_pipeline import CoaExtractor


WEDDING_CAKE_COA = """\
Certificate of Analysis
Strain: Wedding Cake
Type: Hybrid

Terpenes
Analyte          Result
Myrcene 1.2%
Limonene 0.8%
Caryophyllene 0.4%

Cannabinoids
Total THC: 23.0%
"""


@pytest.fixture
def wedding_cake_text() -> str:
    return WEDDING_CAKE_COA


@pytest.fixture
def extractor() -> CoaExtractor:
    return CoaExtractor()
