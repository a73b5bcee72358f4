import pandas as pd
import pytest

from product_match.catalog_build import seed_catalog_df
from product_match.config import PRODUCT_PROJECTION
from product_match.errors import StoreError
from product_match.store import FrameProductStore


@pytest.fixture
def store():
    return FrameProductStore(seed_catalog_df())


def _titles(docs):
    return [d["title"] for d in docs]


def test_exact_field_filter(store):
    docs = store.find({"category": "Quarto"})
    assert sorted(_titles(docs)) == ["Cama Queen Estofada Bege", "Cômoda de Quarto 4 Gavetas Preta"]


def test_regex_is_case_insensitive_substring(store):
    docs = store.find({"description": {"$regex": "VELUDO", "$options": "i"}})
    assert _titles(docs) == ["Sofá Minimalista Velvet"]
    assert store.find({"description": {"$regex": "VELUDO"}}) == []


def test_or_and_in_clauses(store):
    docs = store.find({"$or": [{"type": "Cama"}, {"type": {"$in": ["Aparador", "Banqueta"]}}]})
    assert len(docs) == 3

    docs = store.find({"$and": [{"category": "Sala de Estar"}, {"type": {"$eq": "Poltrona"}}]})
    assert _titles(docs) == ["Poltrona Lounge Couro"]


def test_text_search_matches_stemmed_tokens(store):
    docs = store.find({"$text": {"$search": "sofás veludos"}})
    assert _titles(docs) == ["Sofá Minimalista Velvet"]


def test_text_search_without_index_raises():
    store = FrameProductStore(seed_catalog_df(), text_index=False)
    with pytest.raises(StoreError):
        store.find({"$text": {"$search": "veludo"}})


def test_unsupported_operator_raises(store):
    with pytest.raises(StoreError):
        store.find({"$where": "1 == 1"})
    with pytest.raises(StoreError):
        store.find({"price": {"$gt": 10}})
    with pytest.raises(StoreError):
        store.find({"$or": []})


def test_projection_and_limit(store):
    docs = store.find({}, projection={"title": 1}, limit=2)
    assert len(docs) == 2
    assert set(docs[0]) == {"id", "title"}

    full = store.find({"id": "p0"}, projection=PRODUCT_PROJECTION)
    assert set(full[0]) == {"id", *PRODUCT_PROJECTION}


def test_missing_values_come_back_as_none():
    df = pd.DataFrame(
        [{"id": "x", "title": "Banco", "category": "Cozinha", "type": "Banco", "price": 50.0, "width": float("nan")}]
    )
    store = FrameProductStore(df)
    doc = store.find_one({"id": "x"})
    assert doc["width"] is None


def test_find_one(store):
    assert store.find_one({"id": "p1"})["title"] == "Cadeira Eames Wood"
    assert store.find_one({"id": "missing"}) is None
    assert len(store) == 10
