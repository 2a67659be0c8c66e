"""
payment_sources.py
-------------------
Loaders for the raw payment and plan tables.

CSV cells are read as strings: amounts so they reach Decimal without a
float round-trip, zips so leading zeros survive.
"""

import logging
import sqlite3
from typing import Tuple

import pandas as pd

from config.config_loader import get_input_config

logger = logging.getLogger(__name__)


def load_payments_csv(path: str) -> pd.DataFrame:
    """Reads a payments CSV export."""
    df = pd.read_csv(path, dtype=str)
    logger.info(f"Loaded {len(df):,} payments from {path}.")
    return df


def load_plans_csv(path: str) -> pd.DataFrame:
    """Reads a plan definitions CSV (plan_id, plan_interval)."""
    df = pd.read_csv(path, dtype=str)
    logger.info(f"Loaded {len(df):,} plans from {path}.")
    return df


def load_from_sqlite(database_path: str) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Reads the payments and plan tables from a SQLite database.

    Table names come from config (input.payments_table / input.plans_table).
    Amounts are cast to TEXT in SQL so Decimal parsing sees the stored value.

    Returns:
        (payments_df, plans_df)
    """
    config = get_input_config()
    payments_table = config["payments_table"]
    plans_table = config["plans_table"]

    conn = sqlite3.connect(database_path)
    try:
        payments = pd.read_sql(f"SELECT * FROM {payments_table}", conn)
        if "amount" in payments.columns:
            amounts = pd.read_sql(
                f"SELECT id, CAST(amount AS TEXT) AS amount FROM {payments_table}", conn
            )
            payments = payments.drop(columns=["amount"]).merge(amounts, on="id", how="left")
        plans = pd.read_sql(f"SELECT plan_id, plan_interval FROM {plans_table}", conn)
    finally:
        conn.close()

    logger.info(
        f"Loaded {len(payments):,} payments and {len(plans):,} plans from {database_path}."
    )
    return payments, plans
