"""Main Quart application for the FundingIQ knowledge service."""
import asyncio
import json
import logging

import structlog
from pydantic import ValidationError
from quart import Quart, Response, jsonify, request

from fundingiq import config, db
from fundingiq.errors import FundingIQError, StreamTruncatedError
from fundingiq.languages import LANGUAGES
from fundingiq.rag.ingest import IngestPipeline
from fundingiq.rag.query import QueryPipeline
from fundingiq.schemas import ProcessDocumentRequest, QueryRequest

# Configure structured logging
logging.basicConfig(format="%(message)s", level=config.LOG_LEVEL)
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

# Initialize Quart app
app = Quart(__name__)
app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES

# Initialize pipelines
ingest_pipeline = IngestPipeline()
query_pipeline = QueryPipeline()


def _validation_message(error: ValidationError) -> str:
    """First validation error as a short human-readable message."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid request").removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


@app.before_serving
async def startup():
    db.init_database()
    logger.info(
        "service_started",
        chat_model=config.CHAT_MODEL,
        gateway_configured=bool(config.GATEWAY_API_KEY),
    )


@app.route("/api/documents", methods=["POST"])
async def upload_document():
    """Upload a document for the knowledge base.

    Expects multipart form data with a `file` field.

    Returns JSON (201): the created document, in `pending` status.
    """
    try:
        files = await request.files
        upload = files.get("file")

        if upload is None or not upload.filename:
            return jsonify({"error": "Missing 'file' in request"}), 400

        data = upload.read()
        if not data:
            return jsonify({"error": "File is empty"}), 400

        document = await ingest_pipeline.upload_document(
            file_name=upload.filename,
            file_type=upload.mimetype,
            data=data,
        )
        return jsonify(document.to_dict()), 201

    except Exception as e:
        logger.error("document_upload_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"error": "Failed to upload document"}), 500


@app.route("/api/documents", methods=["GET"])
async def list_documents():
    """List uploaded documents, most recent first.

    Returns JSON:
    {
        "documents": [{"id": "uuid", "file_name": "...", "status": "ready", ...}, ...]
    }
    """
    try:
        documents = db.list_documents()
        return jsonify({"documents": [d.to_dict() for d in documents]})

    except Exception as e:
        logger.error("documents_list_error", error=str(e))
        return jsonify({"error": "Failed to list documents"}), 500


@app.route("/api/documents/<document_id>", methods=["GET"])
async def get_document(document_id: str):
    document = db.get_document(document_id)
    if document is None:
        return jsonify({"error": "Document not found"}), 404
    return jsonify(document.to_dict())


@app.route("/api/documents/<document_id>/chunks", methods=["GET"])
async def get_document_chunks(document_id: str):
    """List the chunks stored for a document, in creation order."""
    if db.get_document(document_id) is None:
        return jsonify({"error": "Document not found"}), 404

    chunks = db.get_chunks_for_document(document_id)
    return jsonify({
        "chunks": [
            {
                "id": c.id,
                "run_id": c.run_id,
                "chunk_index": c.chunk_index,
                "content": c.content,
                "keywords": c.keywords,
            }
            for c in chunks
        ]
    })


@app.route("/api/documents/<document_id>", methods=["DELETE"])
async def delete_document(document_id: str):
    """Delete a document with its chunks and stored file.

    Returns:
        204 No Content if successful
        404 Not Found if document doesn't exist
    """
    try:
        deleted = await ingest_pipeline.delete_document(document_id)

        if deleted:
            return "", 204
        else:
            return jsonify({"error": "Document not found"}), 404

    except Exception as e:
        logger.error("document_delete_error", error=str(e), document_id=document_id)
        return jsonify({"error": "Failed to delete document"}), 500


@app.route("/api/process-document", methods=["POST"])
async def process_document():
    """Extract, chunk and index an uploaded document.

    Expects JSON body:
    {
        "documentId": "uuid",
        "filePath": "uuid/report.pdf"
    }

    Returns JSON:
    {
        "success": true,
        "chunksCreated": 12,
        "documentId": "uuid"
    }
    """
    try:
        data = await request.get_json(silent=True)
        body = ProcessDocumentRequest.model_validate(data or {})
    except ValidationError:
        return jsonify({"error": "documentId and filePath are required"}), 400

    try:
        result = await ingest_pipeline.process_document(body.document_id, body.file_path)

    except FundingIQError as e:
        return jsonify({"error": e.message, "documentId": body.document_id}), e.status_code

    except Exception as e:
        logger.error("process_document_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"error": "Processing failed", "documentId": body.document_id}), 500

    return jsonify({
        "success": True,
        "chunksCreated": result.chunks_created,
        "documentId": result.document_id,
    })


@app.route("/api/rag-query", methods=["POST"])
async def rag_query():
    """Answer a query with a streamed completion grounded in the knowledge base.

    Expects JSON body:
    {
        "query": "user question",
        "language": "hi",                 // optional, defaults to "en"
        "conversationHistory": [...],     // optional, last 10 turns are used
        "useKnowledgeBase": true          // optional, defaults to true
    }

    Returns a `text/event-stream` body relayed from the gateway, with the
    contributing documents in the `X-Sources` header as a JSON list of
    {"name", "category"} objects.
    """
    try:
        data = await request.get_json(silent=True)
        query_request = QueryRequest.model_validate(data or {})
    except ValidationError as e:
        return jsonify({"error": _validation_message(e)}), 400

    try:
        stream, prepared = await query_pipeline.stream(query_request)

    except FundingIQError as e:
        return jsonify({"error": e.message}), e.status_code

    except Exception as e:
        logger.error("rag_query_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"error": "Failed to generate response"}), 500

    async def relay():
        try:
            async for frame in stream.iter_frames():
                yield frame.encode("utf-8")
            logger.info("rag_query_completed", num_sources=len(prepared.sources))
        except StreamTruncatedError:
            logger.error("rag_query_stream_truncated")
            raise
        except asyncio.CancelledError:
            logger.info("rag_query_client_disconnected")
            raise
        finally:
            await stream.aclose()

    headers = {
        "X-Sources": json.dumps([s.to_dict() for s in prepared.sources]),
        "X-Language": prepared.language.name,
        "Cache-Control": "no-cache",
    }
    response = Response(relay(), mimetype="text/event-stream", headers=headers)
    response.timeout = None
    return response


@app.route("/api/languages", methods=["GET"])
async def list_languages():
    """List supported response languages."""
    return jsonify({
        "languages": [
            {"code": lang.code, "name": lang.name} for lang in LANGUAGES.values()
        ],
        "default": config.DEFAULT_LANGUAGE,
    })


@app.route("/health/ready")
async def health_ready():
    """Readiness probe - check if app can serve requests.

    Checks:
    - Gateway credentials are configured
    - Database is reachable
    """
    checks = {
        "status": "healthy",
        "gateway_configured": query_pipeline.client.is_configured,
        "database": False,
    }

    try:
        checks["chunks"] = db.get_chunk_count()
        checks["database"] = True
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["error"] = str(e)

    if not (checks["gateway_configured"] and checks["database"]):
        checks["status"] = "unhealthy"

    status_code = 200 if checks["status"] == "healthy" else 503
    return jsonify(checks), status_code


@app.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@app.errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(413)
async def too_large(error):
    """Handle uploads over MAX_UPLOAD_BYTES."""
    return jsonify({"error": "File too large"}), 413


@app.errorhandler(500)
async def internal_error(error):
    """Handle 500 errors."""
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error"}), 500


if __name__ == "__main__":
    # For development - use hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
