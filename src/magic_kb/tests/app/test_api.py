from functools import cached_property

import pytest
import yaml
from fastapi.testclient import TestClient

from magic_kb.app import api
from magic_kb.app.container import KnowledgeBaseContainer
from magic_kb.common.errors import EmbeddingError, StorageError

VOCABULARY = ["python", "logging", "install"]


class KeywordEmbedder:
    """Deterministic offline embedder: keyword counts plus a bias term."""

    def embed_documents(self, documents):
        return [[float(d.lower().count(w)) for w in VOCABULARY] + [0.1] for d in documents]


class OfflineContainer(KnowledgeBaseContainer):
    """Container whose embedder never touches the network."""

    @cached_property
    def embedder(self):
        return KeywordEmbedder()


DOC = "# Guide\n\n## Install\n\nInstall the python package.\n\n## Logging\n\nConfigure python logging.\n"


@pytest.fixture
def client(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(yaml.safe_dump({
        "embedder": {"kind": "openai_like", "api_key": "test"},
        "chunking": {"min_tokens": 5, "max_tokens": 100},
        "ingestion": {"max_file_bytes": 2048},
        "retrieval": {"default_k": 2},
    }))
    monkeypatch.setenv("MAGIC_KB_CONFIG", str(cfg_path))
    monkeypatch.setattr(api, "build_container", lambda cfg: OfflineContainer(config=cfg))

    with TestClient(api.app) as test_client:
        yield test_client


def _ingest_doc(client, project_id="p1"):
    response = client.post("/v1/ingest", json={"project_id": project_id, "source_kind": "text", "payload": DOC, "declared_type": "md"})
    assert response.status_code == 200
    return response.json()


def test_health(client):
    """The health endpoint reports ok."""
    assert client.get("/health").json() == {"status": "ok"}


def test_ingest_text_returns_asset_and_chunk_count(client):
    """Text ingestion reports the created asset and its chunk count."""
    body = _ingest_doc(client)

    assert body["chunk_count"] == 3
    assert body["is_new"] is True
    assert body["embedded"] is True

    again = _ingest_doc(client)
    assert again["asset_id"] == body["asset_id"]
    assert again["is_new"] is False


def test_ingest_file_upload(client):
    """Multipart uploads are sniffed by filename and ingested."""
    response = client.post(
        "/v1/ingest/file",
        data={"project_id": "p1"},
        files={"file": ("notes.md", b"# Notes\n\nSome python notes.", "text/markdown")},
    )

    assert response.status_code == 200
    assert response.json()["chunk_count"] == 1


def test_oversized_upload_is_413(client):
    """Files above the configured ceiling are rejected with 413."""
    response = client.post(
        "/v1/ingest/file",
        data={"project_id": "p1"},
        files={"file": ("big.md", b"x " * 2048, "text/markdown")},
    )

    assert response.status_code == 413
    assert "File size too large" in response.json()["error"]


def test_malformed_pdf_is_400(client):
    """Format errors map to 400 with an actionable message."""
    response = client.post(
        "/v1/ingest/file",
        data={"project_id": "p1"},
        files={"file": ("broken.pdf", b"definitely not a pdf", "application/pdf")},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "The uploaded file is not a valid PDF document.", "type": "FormatError"}


def test_unknown_source_kind_is_rejected_by_schema(client):
    """The JSON ingestion endpoint only accepts text and url sources."""
    response = client.post("/v1/ingest", json={"project_id": "p1", "source_kind": "file", "payload": "x"})
    assert response.status_code == 422


def test_retrieve_returns_ranked_chunks_and_context_pack(client):
    """Retrieval returns ranked hits, a context pack and uses the configured default k."""
    _ingest_doc(client)

    body = client.post("/v1/retrieve", json={"project_id": "p1", "query": "python logging"}).json()

    assert len(body["chunks"]) == 2
    assert body["chunks"][0]["rank"] == 1
    assert body["chunks"][0]["heading_path"] == ["Guide", "Logging"]
    assert body["context_pack"].startswith("## [")
    assert body["no_relevant_content"] is False


def test_retrieve_without_content_flags_no_relevant_content(client):
    """An empty project yields no chunks and the no-relevant-content flag."""
    body = client.post("/v1/retrieve", json={"project_id": "empty", "query": "python", "k": 3}).json()
    assert body == {"chunks": [], "context_pack": "", "no_relevant_content": True}


def test_retrieve_validation_errors_are_400(client):
    """Empty queries and non-positive k are validation errors."""
    assert client.post("/v1/retrieve", json={"project_id": "p1", "query": " ", "k": 2}).status_code == 400
    assert client.post("/v1/retrieve", json={"project_id": "p1", "query": "python", "k": 0}).status_code == 400


def test_index_backfills_and_reports_count(client):
    """The index endpoint reports how many chunks were embedded."""
    _ingest_doc(client)
    assert client.post("/v1/index", json={"project_id": "p1"}).json() == {"indexed_count": 0}


def test_storage_errors_are_500(client, monkeypatch):
    """Storage failures surface as internal errors without leaking details."""

    def broken_run(project_id):
        raise StorageError("kv backend down", user_message="Storage is unavailable. Please try again later.")

    monkeypatch.setattr(client.app.state.container.backfill, "run", broken_run)
    response = client.post("/v1/index", json={"project_id": "p1"})

    assert response.status_code == 500
    assert response.json()["error"] == "Storage is unavailable. Please try again later."


def test_project_stats(client):
    """Stats expose asset, embedding and lexical counts."""
    _ingest_doc(client)
    body = client.get("/v1/projects/p1/stats").json()

    assert body["assets"] == 1
    assert body["embeddings"]["chunks_with_embeddings"] == 3
    assert body["lexical"]["total_chunks"] == 3


def test_shutdown_releases_embedding_workers(tmp_path, monkeypatch):
    """Stopping the app closes the embedding client so no new batches can run."""
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(yaml.safe_dump({"embedder": {"kind": "openai_like", "api_key": "test"}}))
    monkeypatch.setenv("MAGIC_KB_CONFIG", str(cfg_path))
    monkeypatch.setattr(api, "build_container", lambda cfg: OfflineContainer(config=cfg))

    with TestClient(api.app) as test_client:
        _ingest_doc(test_client)
        container = api.app.state.container
        assert container.embedding_client.embed(["python"])

    with pytest.raises(EmbeddingError):
        container.embedding_client.embed(["python"])
