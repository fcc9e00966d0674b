"""Column types shared by the order engine models.

Everything here maps to portable SQLAlchemy types so the same models run
on PostgreSQL in production and on SQLite in tests.
"""
from sqlalchemy import JSON, Numeric, Uuid

# JSONB is PostgreSQL-only; JSON works on both
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Currency amounts, stored to the cent
MoneyType = Numeric(14, 2)

# Square metres of stone, stored to three decimals
QuantityType = Numeric(14, 3)

# Wastage / discount percentages (0-100)
PercentType = Numeric(6, 2)
