from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from loguru import logger

from .config import CATALOG_SNAPSHOT_PATH
from .normalize import basic_clean


CATALOG_COLUMNS: List[str] = [
    "id",
    "title",
    "description",
    "category",
    "type",
    "price",
    "width",
    "height",
    "depth",
]


# ---------------------------
# Demo catalogue
# ---------------------------

SEED_PRODUCTS: List[Dict[str, Any]] = [
    {
        "title": "Sofá Minimalista Velvet",
        "description": "Sofá de 3 lugares com revestimento em veludo cinza, pés de madeira clara e design escandinavo.",
        "category": "Sala de Estar",
        "type": "Sofá",
        "price": 2499.00,
        "width": 210,
        "height": 85,
        "depth": 90,
    },
    {
        "title": "Cadeira Eames Wood",
        "description": "Cadeira icônica com assento em polipropileno branco e base em madeira e metal.",
        "category": "Sala de Jantar",
        "type": "Cadeira",
        "price": 189.90,
        "width": 46,
        "height": 82,
        "depth": 53,
    },
    {
        "title": "Mesa de Jantar Industrial Rio",
        "description": "Mesa retangular para 6 pessoas, tampo em madeira maciça e estrutura metálica preta.",
        "category": "Sala de Jantar",
        "type": "Mesa",
        "price": 1250.00,
        "width": 160,
        "height": 75,
        "depth": 90,
    },
    {
        "title": "Poltrona Lounge Couro",
        "description": "Poltrona giratória revestida em couro legítimo marrom com base em alumínio.",
        "category": "Sala de Estar",
        "type": "Poltrona",
        "price": 3200.00,
        "width": 80,
        "height": 95,
        "depth": 85,
    },
    {
        "title": "Estante de Livros Modular Branca",
        "description": "Estante com 5 prateleiras em MDF branco, ideal para escritórios ou salas de estar.",
        "category": "Escritório",
        "type": "Estante",
        "price": 450.00,
        "width": 80,
        "height": 180,
        "depth": 30,
    },
    {
        "title": "Cama Queen Estofada Bege",
        "description": "Cama box queen size com cabeceira estofada em linho bege e estrutura reforçada.",
        "category": "Quarto",
        "type": "Cama",
        "price": 1800.00,
        "width": 158,
        "height": 110,
        "depth": 198,
    },
    {
        "title": "Mesa de Centro Rústica Pinus",
        "description": "Mesa de centro baixa em madeira de pinus tratada com acabamento em verniz fosco.",
        "category": "Sala de Estar",
        "type": "Mesa de Centro",
        "price": 320.00,
        "width": 90,
        "height": 35,
        "depth": 60,
    },
    {
        "title": "Cômoda de Quarto 4 Gavetas Preta",
        "description": "Cômoda moderna com puxadores embutidos e gavetas com corrediças telescópicas.",
        "category": "Quarto",
        "type": "Cômoda",
        "price": 780.00,
        "width": 90,
        "height": 100,
        "depth": 45,
    },
    {
        "title": "Aparador Contemporâneo Espelhado",
        "description": "Aparador para hall de entrada com acabamento em espelho e pés palito.",
        "category": "Hall de Entrada",
        "type": "Aparador",
        "price": 1100.00,
        "width": 120,
        "height": 80,
        "depth": 40,
    },
    {
        "title": "Banqueta Alta de Cozinha Metal",
        "description": "Banqueta industrial em aço carbono com pintura epóxi amarela, ideal para bancadas.",
        "category": "Cozinha",
        "type": "Banqueta",
        "price": 215.00,
        "width": 40,
        "height": 75,
        "depth": 40,
    },
]


# ---------------------------
# Field parsing helpers
# ---------------------------

def _coerce_dimension(value) -> Optional[float]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if out > 0 else None


def _coerce_id(value):
    # ids read back from JSON / mixed columns may arrive as 507.0
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _coerce_price(value) -> Optional[float]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, str):
        value = value.replace("R$", "").replace(" ", "").replace(",", ".")
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ---------------------------
# Catalog normalization
# ---------------------------

def build_catalog_df(records: Sequence[Dict[str, Any]]) -> pd.DataFrame:
    """
    Normalise raw product records into the canonical frame:

    - id (str; assigned as "p<n>" when missing)
    - title, description, category, type (cleaned str)
    - price (float, NaN when unparseable)
    - width / height / depth (float or None)

    Rows without a title are dropped. Values are cleaned but not validated
    against the Product shape; the retrieval layer drops invalid rows.
    """
    logger.info("Normalizing catalog with {} raw records", len(records))
    if not records:
        return pd.DataFrame(columns=CATALOG_COLUMNS)

    df = pd.DataFrame(list(records))
    if "_id" in df.columns and "id" not in df.columns:
        df = df.rename(columns={"_id": "id"})
    for col in CATALOG_COLUMNS:
        if col not in df.columns:
            df[col] = None

    df["id"] = df["id"].astype(object)
    missing_ids = df["id"].isna()
    if missing_ids.any():
        df.loc[missing_ids, "id"] = [f"p{i}" for i in df.index[missing_ids]]
    df["id"] = df["id"].map(_coerce_id).astype(object)

    for col in ("title", "description", "category", "type"):
        df[col] = df[col].apply(basic_clean)

    df["price"] = df["price"].apply(_coerce_price)
    for col in ("width", "height", "depth"):
        df[col] = df[col].apply(_coerce_dimension).astype(object)

    before = len(df)
    df = df[df["title"] != ""]
    df = df.drop_duplicates(subset=["id"]).reset_index(drop=True)
    if len(df) != before:
        logger.warning("Dropped {} catalog rows (empty title or duplicate id)", before - len(df))

    logger.info("Catalog normalization complete. Final rows: {}", len(df))
    return df[CATALOG_COLUMNS]


def seed_catalog_df() -> pd.DataFrame:
    return build_catalog_df(SEED_PRODUCTS)


# ---------------------------
# IO helpers
# ---------------------------

def write_catalog_snapshot(df: pd.DataFrame, output_path: Path = CATALOG_SNAPSHOT_PATH) -> Path:
    logger.info("Writing catalog snapshot to {}", output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.suffix.lower() == ".parquet":
        df.to_parquet(output_path, index=False)
    else:
        df.to_json(output_path, orient="records", force_ascii=False, indent=2)
    logger.info("Catalog snapshot written with {} rows", len(df))
    return output_path


def load_catalog_snapshot(path: Path = CATALOG_SNAPSHOT_PATH) -> pd.DataFrame:
    """
    Load a catalog snapshot (.json records or .parquet). Falls back to the
    demo catalogue when the default snapshot does not exist yet.
    """
    if not path.exists():
        if path == CATALOG_SNAPSHOT_PATH:
            logger.warning("No catalog snapshot at {}; using demo catalogue", path)
            return seed_catalog_df()
        raise FileNotFoundError(f"Catalog snapshot not found: {path}")

    logger.info("Loading catalog snapshot from {}", path)
    if path.suffix.lower() == ".parquet":
        records = pd.read_parquet(path).to_dict(orient="records")
    else:
        records = json.loads(path.read_text(encoding="utf-8"))
    df = build_catalog_df(records)
    logger.info("Loaded catalog snapshot with {} rows", len(df))
    return df


# ---------------------------
# CLI entrypoint
# ---------------------------

if __name__ == "__main__":
    # python -m product_match.catalog_build
    write_catalog_snapshot(seed_catalog_df())
