import pytest

from product_match.catalog_build import build_catalog_df, seed_catalog_df
from product_match.pipeline_types import Guess, ImageSignals
from product_match.store import FrameProductStore


class RecordingStore(FrameProductStore):
    """FrameProductStore that remembers every query it was asked to run."""

    def __init__(self, df, text_index=True):
        super().__init__(df, text_index=text_index)
        self.queries = []

    def find(self, query, projection=None, limit=None):
        self.queries.append(query)
        return super().find(query, projection=projection, limit=limit)


def product(pid, title, category="Sala de Estar", type_="Sofá", description="", price=100.0, **dims):
    return {
        "id": pid,
        "title": title,
        "description": description,
        "category": category,
        "type": type_,
        "price": price,
        **dims,
    }


@pytest.fixture
def make_store():
    def _make(records, text_index=True):
        return RecordingStore(build_catalog_df(records), text_index=text_index)

    return _make


@pytest.fixture
def seed_store():
    return RecordingStore(seed_catalog_df())


@pytest.fixture
def velvet_signals():
    # what the vision model says about a grey velvet sofa photo
    return ImageSignals(
        category_guess=Guess(value="Sala de Estar", confidence=0.9),
        type_guess=Guess(value="Sofá", confidence=0.9),
        keywords=["veludo"],
    )
