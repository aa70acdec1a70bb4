"""
Tool registry glue: build a ready-to-use pipeline for a tool id.

Endpoints, weights and naming live in ``config/defaults.yaml``; only tools
whose form fields cannot be derived generically from their options register a
field builder here.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from .configuration import get_tool_config, load_settings
from .errors import ValidationError
from .models import PipelineSettings
from .pipeline import FieldBuilder, ProcessingPipeline, default_field_builder
from .transport import NamedPayload

COMPRESSION_PRESETS = ("extreme", "recommended", "low")
DEFAULT_COMPRESS_DPI = 120
DEFAULT_COMPRESS_IMAGE_QUALITY = 60


def compress_fields(files: Sequence[NamedPayload], options: Mapping[str, Any]) -> List[NamedPayload]:
    """
    Form fields for ``compress-pdf``.

    Simple mode sends a preset; advanced mode sends explicit DPI and image
    quality, defaulting to 120 DPI and quality 60.
    """
    mode = options.get("mode", "simple")
    fields = [NamedPayload.scalar("mode", mode)]
    if mode == "simple" and options.get("preset"):
        preset = options["preset"]
        if preset not in COMPRESSION_PRESETS:
            raise ValidationError(f"Unknown compression preset '{preset}'")
        fields.append(NamedPayload.scalar("preset", preset))
    else:
        fields.append(NamedPayload.scalar("dpi", options.get("dpi") or DEFAULT_COMPRESS_DPI))
        fields.append(NamedPayload.scalar("imageQuality", options.get("imageQuality") or DEFAULT_COMPRESS_IMAGE_QUALITY))
    return fields


def watermark_fields(files: Sequence[NamedPayload], options: Mapping[str, Any]) -> List[NamedPayload]:
    # ``type`` selects the endpoint; everything else is sent as JSON config
    config = {key: value for key, value in options.items() if key != "type" and value is not None}
    return [NamedPayload.scalar("config", config)]


FIELD_BUILDERS: Dict[str, FieldBuilder] = {
    "compress-pdf": compress_fields,
    "watermark-pdf": watermark_fields,
}


def create_tool_pipeline(
    tool_id: str,
    *,
    settings: Optional[PipelineSettings] = None,
    field_builder: Optional[FieldBuilder] = None,
    **kwargs: Any,
) -> ProcessingPipeline:
    """
    Build a pipeline for a registered tool.

    Args:
        tool_id: Registry key such as ``compress-pdf``
        settings: Pipeline settings (default: loaded from configuration)
        field_builder: Overrides the tool's registered field builder
        **kwargs: Forwarded to :class:`ProcessingPipeline`

    Returns:
        A ProcessingPipeline bound to the tool

    Raises:
        KeyError: If the tool is not registered
    """
    settings = settings or load_settings()
    tool = get_tool_config(tool_id, settings)
    builder = field_builder or FIELD_BUILDERS.get(tool_id, default_field_builder)
    return ProcessingPipeline(tool, settings=settings, field_builder=builder, **kwargs)
