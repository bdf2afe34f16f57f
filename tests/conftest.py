from pathlib import Path

import pytest

from provbench.corpus import load_corpus
from provbench.ledger import InMemoryLedgerClient
from provbench.metrics import MetricsSink

SAMPLE_DOCUMENTS = {
    "a.xml": b"""<?xml version="1.0" encoding="UTF-8"?>
<ClinicalDocument xmlns="urn:hl7-org:v3" classCode="DOCCLIN">
  <id root="2.16.840.1.113883.19.4" extension="c266"/>
  <title>Discharge summary</title>
</ClinicalDocument>
""",
    "b.xml": b"""<?xml version="1.0" encoding="UTF-8"?>
<ClinicalDocument xmlns="urn:hl7-org:v3" classCode="DOCCLIN">
  <id root="2.16.840.1.113883.19.4" extension="c267"/>
  <title>Referral note</title>
</ClinicalDocument>
""",
    "c.xml": b"""<?xml version="1.0" encoding="UTF-8"?>
<ClinicalDocument xmlns="urn:hl7-org:v3" classCode="DOCCLIN">
  <id root="2.16.840.1.113883.19.4" extension="c268"/>
  <title>Lab report</title>
</ClinicalDocument>
""",
}


def write_documents(directory: Path, documents: dict[str, bytes]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for name, content in documents.items():
        (directory / name).write_bytes(content)
    return directory


@pytest.fixture
def corpus_dir(tmp_path):
    return write_documents(tmp_path / "corpus", SAMPLE_DOCUMENTS)


@pytest.fixture
def sink():
    return MetricsSink()


@pytest.fixture
def corpus(corpus_dir, sink):
    return load_corpus(corpus_dir, sink)


@pytest.fixture
def memory_ledger():
    client = InMemoryLedgerClient()
    yield client
    client.close()
