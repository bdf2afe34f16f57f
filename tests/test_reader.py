import threading

from provbench.corpus import Corpus
from provbench.fingerprint import canonicalize
from provbench.ledger import InMemoryLedgerClient, NotFoundError, QueryError
from provbench.metrics import Category
from provbench.reader import QueryKeyStrategy, ReadDriver
from provbench.writer import WriteDriver


class RecordingClient:
    def __init__(self, fail_keys=()):
        self.keys = []
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()
        self._fail_keys = set(fail_keys)

    def submit_write(self, *args, **kwargs):
        raise NotImplementedError

    def query_by_fingerprint(self, key):
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            self.keys.append(key)
            if key in self._fail_keys:
                raise QueryError("peer unavailable")
            return "<prov:document/>"
        finally:
            with self._lock:
                self._active -= 1

    def close(self):
        pass


def test_write_then_read_scenario(corpus, sink):
    client = InMemoryLedgerClient(write_delay_s=0.01, query_delay_s=0.005)
    try:
        write_report = WriteDriver(client, sink).write_all(corpus)
        read_report = ReadDriver(client, sink).read_all(corpus)
    finally:
        client.close()

    assert write_report.failure_count == 0
    assert len(sink.series(Category.WRITE)) == 3
    read_samples = sink.series(Category.READ).durations()
    assert len(read_samples) == 3
    assert all(sample >= 5 for sample in read_samples)
    assert list(read_report.keys) == corpus.fingerprints()
    assert read_report.failure_count == 0
    assert read_report.success_count == 3


def test_reads_are_sequential_and_in_corpus_order(corpus, sink):
    client = RecordingClient()
    ReadDriver(client, sink).read_all(corpus)
    assert client.keys == corpus.fingerprints()
    assert client.max_active == 1


def test_query_failure_does_not_stop_the_pass(corpus, sink):
    client = RecordingClient(fail_keys={corpus[1].fingerprint})
    report = ReadDriver(client, sink).read_all(corpus)

    assert client.keys == corpus.fingerprints()
    assert report.failure_count == 1
    assert report.success_count == 2
    assert len(sink.series(Category.READ)) == len(corpus) - 1


def test_unknown_fingerprint_counts_as_failure(corpus, sink, memory_ledger):
    report = ReadDriver(memory_ledger, sink).read_all(corpus)
    assert report.failure_count == 3
    assert len(sink.series(Category.READ)) == 0


def test_canonical_text_strategy_queries_with_canonical_xml(corpus, sink):
    client = RecordingClient()
    ReadDriver(client, sink, key_strategy=QueryKeyStrategy.CANONICAL_TEXT).read_all(corpus)
    assert client.keys == [canonicalize(record.raw_bytes).decode("utf-8") for record in corpus]


def test_canonical_text_report_keeps_fingerprints_not_documents(corpus, sink):
    client = RecordingClient()
    report = ReadDriver(client, sink, key_strategy=QueryKeyStrategy.CANONICAL_TEXT).read_all(corpus)
    assert list(report.keys) == corpus.fingerprints()
    assert not any(key.startswith("<") for key in report.keys)


def test_canonical_text_keys_miss_fingerprint_keyed_ledger(corpus, sink, memory_ledger):
    WriteDriver(memory_ledger, sink).write_all(corpus)
    report = ReadDriver(memory_ledger, sink, key_strategy="canonical").read_all(corpus)
    assert report.failure_count == len(corpus)


def test_strategy_key_derivation():
    canonical = b"<a></a>"
    assert QueryKeyStrategy.CANONICAL_TEXT.key_for(canonical) == "<a></a>"
    assert len(QueryKeyStrategy.FINGERPRINT.key_for(canonical)) == 64


def test_empty_corpus_is_a_no_op(sink, memory_ledger):
    report = ReadDriver(memory_ledger, sink).read_all(Corpus())
    assert report.success_count == 0
    assert report.failure_count == 0
    assert len(sink.series(Category.READ)) == 0


def test_not_found_is_a_query_error():
    assert issubclass(NotFoundError, QueryError)
