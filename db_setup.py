import logging
import sqlite3
from typing import Optional

from settings import settings

logger = logging.getLogger(__name__)


def init_db(db_path: Optional[str] = None):
    conn = get_db_connection(db_path)
    try:
        conn.execute('''
            CREATE TABLE IF NOT EXISTS Contact (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                phoneNumber TEXT,
                email TEXT,
                linkedId INTEGER,
                linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
                createdAt DATETIME NOT NULL,
                updatedAt DATETIME NOT NULL,
                FOREIGN KEY (linkedId) REFERENCES Contact (id)
            )
        ''')
        conn.execute("CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_contact_linked ON Contact (linkedId)")
        conn.commit()
    finally:
        conn.close()
    logger.info("Contact table ready at %s", db_path or settings.database_path)


def get_db_connection(db_path: Optional[str] = None, autocommit: bool = False):
    """Open a connection with rows addressable by column name.

    With autocommit the caller issues BEGIN/COMMIT/ROLLBACK itself.
    """
    conn = sqlite3.connect(
        db_path or settings.database_path,
        timeout=settings.db_timeout,
        isolation_level=None if autocommit else "",
    )
    conn.row_factory = sqlite3.Row
    return conn
