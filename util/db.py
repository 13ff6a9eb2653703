# util/db.py
import psycopg
from psycopg.rows import dict_row

from util import config


def db(dsn: str = None, autocommit: bool = False):
    dsn = dsn or config.DATABASE_URL
    if not dsn:
        raise RuntimeError("DATABASE_URL not set")
    return psycopg.connect(dsn, row_factory=dict_row, autocommit=autocommit)
