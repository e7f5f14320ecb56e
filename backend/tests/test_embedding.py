from unittest.mock import MagicMock, patch

import pytest
from config.settings import EmbeddingConfig
from core.embed.embedder import OpenAIEmbedder, SentenceTransformerEmbedder, build_embedder
from core.errors import ExternalServiceError

def test_openai_embedder_posts_text_and_returns_vector():
    print("Testing OpenAIEmbedder (MOCKED)...")
    config = EmbeddingConfig(provider="openai", model_name="text-embedding-3-small", vector_dim=4)

    with patch("httpx.Client") as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client

        mock_response = MagicMock()
        mock_response.json.return_value = {"data": [{"embedding": [0.1, 0.2, 0.3, 0.4]}]}
        mock_client.post.return_value = mock_response

        embedder = OpenAIEmbedder(api_key="sk-test", config=config)
        vector = embedder.embed("Photosynthesis")

        assert vector == [0.1, 0.2, 0.3, 0.4]
        assert embedder.dimension == 4
        url = mock_client.post.call_args.args[0]
        payload = mock_client.post.call_args.kwargs["json"]
        assert url.endswith("/embeddings")
        assert payload["input"] == "Photosynthesis"
        assert payload["model"] == "text-embedding-3-small"
        assert mock_client.post.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-test"

    print("OpenAIEmbedder tests PASSED")

def test_openai_embedder_failure_is_wrapped():
    with patch("httpx.Client") as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = ConnectionError("connection refused")

        with pytest.raises(ExternalServiceError) as exc_info:
            OpenAIEmbedder(api_key="sk-test", config=EmbeddingConfig()).embed("hello")

    assert exc_info.value.service == "embedding provider"

def test_local_embedder_applies_query_prefix():
    config = EmbeddingConfig(provider="local", model_name="tiny-model", query_prefix="query: ")
    fake_model = MagicMock()
    fake_model.get_sentence_embedding_dimension.return_value = 3
    fake_model.encode.return_value = MagicMock(tolist=lambda: [1.0, 0.0, 0.0])

    SentenceTransformerEmbedder._model = None
    try:
        with patch("core.embed.embedder.SentenceTransformer", return_value=fake_model) as model_class:
            embedder = SentenceTransformerEmbedder(config)
            # Second instance reuses the loaded model
            SentenceTransformerEmbedder(config)

            assert model_class.call_count == 1
            assert embedder.dimension == 3
            assert embedder.embed_query("what is it?") == [1.0, 0.0, 0.0]
            assert fake_model.encode.call_args.args[0] == "query: what is it?"

            embedder.embed("plain passage")
            assert fake_model.encode.call_args.args[0] == "plain passage"
    finally:
        SentenceTransformerEmbedder._model = None

def test_build_embedder_selects_provider():
    assert isinstance(build_embedder(EmbeddingConfig(provider="openai")), OpenAIEmbedder)
    with pytest.raises(ValueError):
        build_embedder(EmbeddingConfig(provider="carrier-pigeon"))

if __name__ == "__main__":
    test_openai_embedder_posts_text_and_returns_vector()
    test_openai_embedder_failure_is_wrapped()
    test_build_embedder_selects_provider()
