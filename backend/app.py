import logging
import os
from contextlib import ExitStack
from pathlib import Path
from typing import Mapping, Optional

from flask import Flask, jsonify, request, send_file, session
from flask_cors import CORS
from werkzeug.datastructures import FileStorage
from werkzeug.wsgi import ClosingIterator

from database import NodeBackend
from errors import BackendUnavailable, DuplicateKey, NodeStoreError, NotFound, StorageFull
from logging_setup import configure_logging
from models import ROOT_ID, Node
from navigation import Breadcrumbs, Crumb
from store import Blob, HierarchicalStore
from usage import QuotaSource, UsageMeter, disk_quota_source

SECRET_KEY = os.getenv("SECRET_KEY", "local-drive-dev-key")
MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 100 * 1024 * 1024))  # 100 MB default
UPLOAD_ALL_OR_NOTHING = os.getenv("UPLOAD_ALL_OR_NOTHING", "0") == "1"

ERROR_STATUS = {
    NotFound: 404,
    DuplicateKey: 409,
    StorageFull: 507,
    BackendUnavailable: 503,
}

logger = logging.getLogger(__name__)


def parse_node_id(raw: Optional[str]) -> str:
    if raw in (None, "", "null"):
        return ROOT_ID
    return raw


def node_payload(node: Node, item_counts: Optional[Mapping[str, int]] = None):
    payload = {
        "id": node.id,
        "name": node.name,
        "parent_id": None if node.id == ROOT_ID else node.parent_id,
        "is_folder": node.is_folder,
        "created_at": node.created_at,
    }
    if node.is_folder:
        payload["item_count"] = (item_counts or {}).get(node.id, 0)
    else:
        payload["size"] = node.size
        payload["type"] = node.type
        payload["download_url"] = f"/api/files/{node.id}/content"
    return payload


def blob_from_upload(upload: FileStorage) -> Blob:
    data = upload.read()
    return Blob(
        name=upload.filename,
        type=upload.mimetype or "application/octet-stream",
        size=len(data),
        content=data,
    )


def crumb_for(node: Node) -> Crumb:
    return Crumb(node.id, node.name)


def load_breadcrumbs() -> Breadcrumbs:
    return Breadcrumbs.from_list(session.get("breadcrumbs"))


def create_app(backend: Optional[NodeBackend] = None, quota_source: Optional[QuotaSource] = None):
    configure_logging()

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH
    app.config["SECRET_KEY"] = SECRET_KEY
    app.config["UPLOAD_ALL_OR_NOTHING"] = UPLOAD_ALL_OR_NOTHING

    CORS(app, resources={r"/api/*": {"origins": "*"}})

    # BackendUnavailable here aborts startup before any route can run.
    backend = (backend or NodeBackend()).open()
    store = HierarchicalStore(backend)
    meter = UsageMeter(store, quota_source or disk_quota_source(Path(__file__).parent))
    app.extensions["node_backend"] = backend
    app.extensions["node_store"] = store

    @app.errorhandler(NodeStoreError)
    def handle_store_error(exc: NodeStoreError):
        status = ERROR_STATUS.get(type(exc), 500)
        if status >= 500:
            logger.error("Request %s %s failed: %s", request.method, request.path, exc)
        return jsonify({"message": str(exc)}), status

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"}), 200

    @app.route("/api/folders", methods=["GET"])
    def list_folder_contents():
        parent_id = parse_node_id(request.args.get("parent_id"))
        query = (request.args.get("q") or "").strip()

        parent = store.get_node(parent_id)
        if not parent.is_folder:
            return jsonify({"message": "Folder not found"}), 404

        items = store.search(parent_id, query)
        item_counts = store.descendant_counts()

        breadcrumbs = load_breadcrumbs()
        if breadcrumbs.current.id != parent_id:
            breadcrumbs = Breadcrumbs(crumb_for(node) for node in store.path_to(parent_id))
            session["breadcrumbs"] = breadcrumbs.to_list()

        response = {
            "parent": node_payload(parent, item_counts),
            "breadcrumbs": breadcrumbs.to_list(),
            "query": query,
            "items": [node_payload(item, item_counts) for item in items],
        }
        return jsonify(response), 200

    @app.route("/api/folders", methods=["POST"])
    def create_folder():
        data = request.get_json(silent=True) or {}
        name = (data.get("name") or "").strip()
        parent_id = parse_node_id(data.get("parent_id"))

        if not name:
            return jsonify({"message": "Folder name is required"}), 400

        parent = store.get_node(parent_id)
        if not parent.is_folder:
            return jsonify({"message": "Parent folder not found"}), 404

        folder = store.create_folder(parent_id, name)
        return jsonify(node_payload(folder)), 201

    @app.route("/api/navigate", methods=["POST"])
    def navigate():
        data = request.get_json(silent=True) or {}
        folder = store.get_node(parse_node_id(data.get("id")))
        if not folder.is_folder:
            return jsonify({"message": "Only folders can be opened"}), 400

        breadcrumbs = load_breadcrumbs()
        breadcrumbs.navigate_to(folder)
        session["breadcrumbs"] = breadcrumbs.to_list()
        return jsonify({"current": breadcrumbs.current.id, "breadcrumbs": breadcrumbs.to_list()}), 200

    @app.route("/api/files", methods=["POST"])
    def upload_files():
        uploads = [upload for upload in request.files.getlist("files") if upload and upload.filename]
        if not uploads:
            return jsonify({"message": "No file provided"}), 400

        parent_id = parse_node_id(request.form.get("parent_id"))
        parent = store.get_node(parent_id)
        if not parent.is_folder:
            return jsonify({"message": "Target folder not found"}), 404

        blobs = [blob_from_upload(upload) for upload in uploads]
        result = store.upload(parent_id, blobs, all_or_nothing=app.config["UPLOAD_ALL_OR_NOTHING"])

        response = {
            "created": [node_payload(node) for node in result.created],
            "failed": [{"name": name, "message": str(exc)} for name, exc in result.failed],
        }
        if not result.created:
            _, first_error = result.failed[0]
            return jsonify(response), ERROR_STATUS.get(type(first_error), 500)
        return jsonify(response), 201

    @app.route("/api/files/<file_id>/content", methods=["GET"])
    def get_file_content(file_id: str):
        node = store.get_node(file_id)
        if node.is_folder:
            return jsonify({"message": "Folders cannot be downloaded"}), 400

        resources = ExitStack()
        try:
            stream = resources.enter_context(store.open_content(file_id))
            response = send_file(
                stream,
                mimetype=node.type or "application/octet-stream",
                as_attachment=request.args.get("inline") != "1",
                download_name=node.name,
            )
        except Exception:
            resources.close()
            raise
        # send_file responses are passed straight through to the server, so
        # call_on_close would never fire. Release when the body iterator closes.
        response.response = ClosingIterator(response.response, resources.close)
        return response

    @app.route("/api/nodes/<node_id>", methods=["DELETE"])
    def delete_node(node_id: str):
        if node_id == ROOT_ID:
            return jsonify({"message": "The root folder cannot be deleted"}), 400

        store.delete_subtree(node_id)

        breadcrumbs = load_breadcrumbs()
        if breadcrumbs.forget(node_id):
            session["breadcrumbs"] = breadcrumbs.to_list()
        return "", 204

    @app.route("/api/usage", methods=["GET"])
    def usage():
        return jsonify(meter.refresh()._asdict()), 200

    return app


if __name__ == "__main__":
    debug = os.getenv("FLASK_DEBUG", "0") == "1"
    host = os.getenv("FLASK_HOST", "0.0.0.0")
    port = int(os.getenv("FLASK_PORT", "5000"))
    app = create_app()
    # Windows + reloader can trigger socket.fromfd issues; disable reloader on nt.
    use_reloader = debug and os.name != "nt"
    try:
        app.run(debug=debug, host=host, port=port, use_reloader=use_reloader)
    finally:
        app.extensions["node_backend"].close()
