"""
Tests for configuration loading, overrides and the tool registry.
"""

import pytest
from omegaconf.errors import OmegaConfBaseException
from pydantic import ValidationError as ModelValidationError

from pdf_tool_pipeline.configuration import (
    get_default_config_container,
    get_tool_config,
    load_settings,
    make_runtime_config,
)
from pdf_tool_pipeline.errors import ValidationError
from pdf_tool_pipeline.models import ProgressWeights, ResponseKind
from pdf_tool_pipeline.tools import compress_fields, create_tool_pipeline, watermark_fields


class TestDefaults:
    """Tests for the shipped defaults."""

    def test_default_weights(self):
        settings = load_settings(use_env=False)
        weights = settings.progress.weights
        assert (weights.preparing, weights.uploading, weights.processing, weights.retrieving) == (5, 35, 50, 10)

    def test_default_rate_settings(self):
        settings = load_settings(use_env=False)
        assert settings.rate.window_size == 10
        assert settings.rate.min_interval == pytest.approx(0.1)

    def test_timeouts_are_unbounded_by_default(self):
        """Only the connect phase has a ceiling."""
        transport = load_settings(use_env=False).transport
        assert transport.read_timeout is None
        assert transport.write_timeout is None

    def test_container_lists_tools(self):
        assert "compress-pdf" in get_default_config_container()["tools"]


class TestOverrides:
    """Tests for runtime overrides and environment variables."""

    def test_overrides_are_merged(self):
        settings = load_settings({"compression": {"level": 9}}, use_env=False)
        assert settings.compression.level == 9
        assert settings.compression.enabled is True

    def test_unknown_keys_are_rejected(self):
        """The base config is struct-locked."""
        with pytest.raises(OmegaConfBaseException):
            make_runtime_config({"compression": {"levle": 9}}, use_env=False)

    def test_new_tools_can_be_registered(self):
        settings = load_settings(
            {"tools": {"echo-pdf": {"endpoint": "/api/worker/echo", "operation_name": "Echoing"}}},
            use_env=False,
        )
        assert get_tool_config("echo-pdf", settings).tool_id == "echo-pdf"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PDF_WORKER_URL", "http://vps:3001/api")
        monkeypatch.setenv("PDF_TOOL_DOWNLOAD_DIR", "/tmp/artifacts")
        settings = load_settings()
        assert settings.api.worker_url == "http://vps:3001/api"
        assert settings.downloads.directory == "/tmp/artifacts"

    def test_invalid_weights_are_rejected(self):
        """Weights must sum to 100."""
        with pytest.raises(ModelValidationError):
            ProgressWeights(preparing=10, uploading=10, processing=10, retrieving=10)
        with pytest.raises(ModelValidationError):
            load_settings({"progress": {"weights": {"preparing": 50}}}, use_env=False)


class TestToolRegistry:
    """Tests for get_tool_config and create_tool_pipeline."""

    def test_unknown_tool(self):
        with pytest.raises(KeyError, match="Unknown tool"):
            get_tool_config("does-not-exist", load_settings(use_env=False))

    def test_binary_tool_config(self):
        tool = get_tool_config("word-to-pdf", load_settings(use_env=False))
        assert tool.response_kind is ResponseKind.BINARY
        assert tool.use_gzip is False
        assert tool.progress_weights.uploading == 45

    def test_multi_file_tool(self):
        assert get_tool_config("merge-pdf", load_settings(use_env=False)).multi_file is True

    def test_factory_binds_tool(self, settings):
        pipeline = create_tool_pipeline("ocr-pdf", settings=settings)
        assert pipeline.tool.tool_id == "ocr-pdf"
        assert pipeline.tool.settle_delay == 2.0


class TestFieldBuilders:
    """Tests for tool-specific form fields."""

    def test_compress_simple_mode_sends_preset(self):
        fields = {f.name: f.value for f in compress_fields([], {"mode": "simple", "preset": "extreme"})}
        assert fields == {"mode": "simple", "preset": "extreme"}

    def test_compress_advanced_mode_defaults(self):
        fields = {f.name: f.value for f in compress_fields([], {"mode": "advanced"})}
        assert fields == {"mode": "advanced", "dpi": "120", "imageQuality": "60"}

    def test_compress_rejects_unknown_preset(self):
        with pytest.raises(ValidationError):
            compress_fields([], {"mode": "simple", "preset": "maximum"})

    def test_watermark_sends_json_config(self):
        fields = watermark_fields([], {"type": "text", "text": "DRAFT", "opacity": 0.3})
        assert [(f.name, f.value) for f in fields] == [("config", '{"text": "DRAFT", "opacity": 0.3}')]
