import logging
import re

from neo4j import GraphDatabase
from neo4j.exceptions import ClientError, DriverError, Neo4jError, ServiceUnavailable, SessionExpired, TransientError

from erc20.errors import SinkError
from erc20.helpers import with_retry

logger = logging.getLogger(__name__)

TRANSFER_LABEL = 'Transfer'
TRANSFER_INDEXED_FIELDS = ('contract', 'from', 'to', 'value', 'timestamp')
DEDUP_KEY = 'hash_idx'

# errors after which the same write may succeed on a second attempt
STORE_TRANSIENT_ERRORS = (ServiceUnavailable, SessionExpired, TransientError)

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def _identifier(name):
    # labels and property names cannot be query parameters
    if not _IDENTIFIER.match(name):
        raise ValueError(f'invalid identifier {name!r}')
    return name


class Neo4jTransferStore:
    """Transfer sink and checkpoint holder backed by a neo4j database."""

    def __init__(self, config, driver=None):
        self.config = config
        if driver is None:
            driver = GraphDatabase.driver(
                config["address"], auth=(config["username"], config["password"]),
                connection_timeout=config.get("timeout", 20))
        self.driver = driver
        self.dbname = config.get("database", "erc20")
        self.retries = config.get("retry", 3)
        self.retry_delay = config.get("retry-delay", 2)

    def close(self):
        self.driver.close()

    def create_db(self):
        with self.driver.session() as system:
            system.run(f"CREATE DATABASE {_identifier(self.dbname)} IF NOT EXISTS").consume()

    def ensure_db_exists(self):
        try:
            with self.driver.session(database=self.dbname) as session:
                try:
                    session.run("RETURN 1").consume()
                except ClientError as e:
                    if e.code == 'Neo.ClientError.Database.DatabaseNotFound':
                        logger.warning(f'database {self.dbname} not found, creating it')
                        self.create_db()
                    else:
                        raise e
        except (Neo4jError, DriverError) as e:
            raise SinkError(f'failed to open database {self.dbname}: {e}') from e

    def ensure_index(self, label, field, unique=False):
        """Create an index (or uniqueness constraint) on ``label.field``.

        Existing indexes are left alone; any failure is logged and ignored.
        """
        label, field = _identifier(label), _identifier(field)
        if unique:
            query = (f"CREATE CONSTRAINT {label.lower()}_{field}_uq IF NOT EXISTS "
                     f"FOR (n:{label}) REQUIRE n.`{field}` IS UNIQUE")
        else:
            query = (f"CREATE INDEX {label.lower()}_{field}_idx IF NOT EXISTS "
                     f"FOR (n:{label}) ON (n.`{field}`)")
        try:
            with self.driver.session(database=self.dbname) as session:
                session.run(query).consume()
        except (Neo4jError, DriverError) as e:
            logger.warning(f'failed to create index on {label}.{field}: {e}')
            return False
        return True

    def ensure_schema(self, label=TRANSFER_LABEL):
        for field in TRANSFER_INDEXED_FIELDS:
            self.ensure_index(label, field, unique=False)
        self.ensure_index(label, DEDUP_KEY, unique=True)

    def _write_rows(self, t, label, rows):
        results = t.run(f"""
            UNWIND $rows AS row
            MERGE (tf:{label} {{{DEDUP_KEY}: row.{DEDUP_KEY}}})
            SET tf += row
            RETURN count(tf) AS c
            """, rows=rows).values()
        return results[0][0]

    def insert_many(self, label, records):
        """Write all records in one transaction.

        Records are merged on their ``hash_idx`` so replaying a range after a
        restart does not duplicate transfers. Raises SinkError when the write
        could not be completed.
        """
        if not records:
            return 0
        label = _identifier(label)
        rows = [record.to_dict() for record in records]

        def write():
            with self.driver.session(database=self.dbname) as session:
                return session.execute_write(self._write_rows, label, rows)

        try:
            return with_retry(write, retries=self.retries, delay=self.retry_delay,
                              operation=f'insert of {len(rows)} {label} nodes',
                              transient=STORE_TRANSIENT_ERRORS)
        except (Neo4jError, DriverError) as e:
            raise SinkError(f'failed to insert {len(rows)} {label} nodes: {e}') from e

    @staticmethod
    def _read_checkpoint(t, name):
        results = t.run(
            "MATCH (c:Checkpoint {name: $name}) RETURN c.height;", name=name).value()
        if len(results) != 1 or results[0] is None:
            return None
        return results[0]

    @staticmethod
    def _write_checkpoint(t, name, height):
        t.run("""
            MERGE (c:Checkpoint {name: $name})
            SET c.height = $height
            """, name=name, height=height).consume()

    def get_checkpoint(self, name):
        """Last height whose transfers are fully stored, or None."""
        def read():
            with self.driver.session(database=self.dbname) as session:
                return session.execute_read(self._read_checkpoint, name)

        try:
            return with_retry(read, retries=self.retries, delay=self.retry_delay,
                              operation=f'read of checkpoint {name}',
                              transient=STORE_TRANSIENT_ERRORS)
        except (Neo4jError, DriverError) as e:
            raise SinkError(f'failed to read checkpoint {name}: {e}') from e

    def set_checkpoint(self, name, height):
        try:
            with self.driver.session(database=self.dbname) as session:
                session.execute_write(self._write_checkpoint, name, height)
        except (Neo4jError, DriverError) as e:
            raise SinkError(f'failed to save checkpoint {name}={height}: {e}') from e
