"""
Local stand-in for the PDF worker service.

The real worker performs the PDF transformations; this app only speaks its
protocol so the pipeline can be exercised end to end during development and in
integration tests:

    POST /api/worker/{tool}              multipart upload -> {fileId, fileName, ...}
    POST /api/worker/{tool}?stream=1     multipart upload -> artifact bytes
    GET  /api/worker/download/{file_id}  artifact bytes
    GET  /api/worker/health              service status

"Processing" is the identity transform (merge concatenates its inputs).

Usage:
    uvicorn pdf_tool_pipeline.devserver:create_app --factory --port 3001
"""

from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import UploadFile

from .compression import COMPRESSED_FIELD, GZIP_SUFFIX, decompress_bytes
from .errors import CompressionError
from .utils import ensure_directory, sanitize_filename, split_extension

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[^a-zA-Z0-9-]")


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


async def _read_inputs(request: Request) -> Tuple[List[Tuple[str, bytes]], Dict[str, str]]:
    form = await request.form()
    compressed = str(form.get(COMPRESSED_FIELD, "")).lower() == "true"
    inputs: List[Tuple[str, bytes]] = []
    fields: Dict[str, str] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            name = value.filename or "document.pdf"
            content = await value.read()
            await value.close()
            if compressed and name.endswith(GZIP_SUFFIX):
                content = decompress_bytes(content)
                name = name.removesuffix(GZIP_SUFFIX)
            inputs.append((name, content))
        else:
            fields[key] = value
    return inputs, fields


def create_app(storage_dir: Optional[Path] = None) -> FastAPI:
    storage = ensure_directory(storage_dir or Path(tempfile.gettempdir()) / "pdf-tools-storage")
    app = FastAPI(title="PDF Worker (development)", version="0.1.0")

    @app.get("/api/worker/health")
    def healthcheck() -> Dict[str, object]:
        return {"status": "ok", "services": {"storage": str(storage)}}

    @app.get("/api/worker/download/{file_id}")
    def download(file_id: str) -> Response:
        safe_id = _SAFE_ID.sub("", Path(file_id).name)
        artifact = storage / f"{safe_id}.pdf"
        if not safe_id or not artifact.is_file():
            return _error("File not found", 404)
        return Response(
            content=artifact.read_bytes(),
            media_type="application/pdf",
            headers={"Content-Disposition": 'attachment; filename="document.pdf"'},
        )

    @app.post("/api/worker/{tool:path}")
    async def process(tool: str, request: Request, stream: bool = False) -> Response:
        try:
            inputs, fields = await _read_inputs(request)
        except CompressionError as exc:
            return _error(exc.message, 400)
        if not inputs:
            return _error("No file uploaded", 400)

        output = b"".join(content for _, content in inputs)
        stem, _ = split_extension(inputs[0][0])
        tool_name = tool.split("/")[0].removesuffix("-pdf") or "processed"
        file_name = sanitize_filename(f"{stem}-{tool_name}.pdf")
        logger.info(f"Processed {len(inputs)} file(s) with {tool} ({len(output)} bytes)")

        if stream:
            return Response(
                content=output,
                media_type="application/pdf",
                headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
            )

        file_id = uuid4().hex
        (storage / f"{file_id}.pdf").write_bytes(output)
        return JSONResponse(
            {
                "success": True,
                "fileId": file_id,
                "fileName": file_name,
                "originalSize": sum(len(content) for _, content in inputs),
                "resultSize": len(output),
                "options": fields,
            }
        )

    return app

