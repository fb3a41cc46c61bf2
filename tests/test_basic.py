import pytest

from app.services.errors import (
    ConfigurationError,
    GatewayError,
    ImagePatchFailure,
    MalformedModelOutput,
    classify_error,
)
from app.services.gateway import ModelGateway


def test_read_root(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_missing_api_key_is_fatal(monkeypatch):
    from app.config import settings
    monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
    with pytest.raises(ConfigurationError):
        ModelGateway.from_env()


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (GatewayError("429 You exceeded your current quota"), "exceeded your API quota"),
        (GatewayError("400 API key not valid. Please pass a valid API key."), "API key is not valid"),
        (GatewayError("400 Invalid argument"), "uploaded images might be invalid"),
        (MalformedModelOutput("content generation", "raw"), "invalid text format during content generation"),
        (ImagePatchFailure(0, "Add Go"), "deselect this change"),
        (GatewayError("503 The model is overloaded"), "503 The model is overloaded"),
    ],
)
def test_classify_error(error, expected):
    assert expected in classify_error(error)
