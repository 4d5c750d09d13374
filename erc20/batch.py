import logging

from erc20.errors import SinkError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 15000


class BatchBuffer:
    """Accumulates transfer records and hands them to the sink in bulk.

    The buffer keeps arrival order. A flush always empties it, whether or
    not the sink managed to store the records.
    """

    def __init__(self, sink, label='Transfer', batch_size=DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError('batch size must be positive')
        self.sink = sink
        self.label = label
        self.batch_size = batch_size
        self.records = []
        self.failed_records = 0

    def __len__(self):
        return len(self.records)

    def push(self, record):
        self.records.append(record)

    def should_flush(self, stopping=False):
        return stopping or len(self.records) >= self.batch_size

    def flush_if(self, predicate):
        """Flush when ``predicate(buffer)`` holds. Returns None if it did not."""
        if predicate(self):
            return self.flush()
        return None

    def flush(self):
        """Insert every buffered record with one sink call and clear the buffer.

        Returns False when the sink failed, True otherwise.
        """
        if not self.records:
            return True
        records, self.records = self.records, []
        try:
            self.sink.insert_many(self.label, records)
        except SinkError as e:
            self.failed_records += len(records)
            logger.error(f'dropped {len(records)} transfers: {e}')
            return False
        logger.info(f'stored {len(records)} transfers')
        return True


def report_progress(current_height, total_transfers, pending):
    print(f'Block: {current_height:>12,} Total Transfer: {total_transfers:>12,} Pending Transfer: {pending:>6,}')
