from __future__ import annotations

"""
Flask application for the Taxatree project.

This application serves:

- A standalone interactive tree built from the configured rows file at `/`
- An API endpoint that builds a decorated outline from taxon rows at
  `/build-taxonomy`
- An API endpoint that converts a tree to a download format at `/export`
- A liveness probe at `/health`

To run in development from the project root:

    python web/app.py
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from flask import (
    Flask,
    Response,
    jsonify,
    request,
)

# ---------------------------------------------------------------------------
# Path setup so "taxatree" can be imported when running web/app.py directly
# ---------------------------------------------------------------------------

CURRENT_FILE_PATH: Path = Path(__file__).resolve()
PROJECT_ROOT_DIRECTORY: Path = CURRENT_FILE_PATH.parents[1]
SOURCE_DIRECTORY: Path = PROJECT_ROOT_DIRECTORY / "src"

if str(SOURCE_DIRECTORY) not in sys.path:
    sys.path.insert(0, str(SOURCE_DIRECTORY))

from taxatree.config import TaxatreeConfig  # type: ignore  # noqa: E402
from taxatree.data_io import load_rows  # type: ignore  # noqa: E402
from taxatree.errors import ExportError  # type: ignore  # noqa: E402
from taxatree.export import (  # type: ignore  # noqa: E402
    EXPORT_FORMATS,
    export_file_name,
    export_phylogenetic,
    export_tabular,
    forest_from_graph,
    graph_to_csv,
    graph_to_phyloxml,
)
from taxatree.graph import TaxonNode, build_forest  # type: ignore  # noqa: E402
from taxatree.html_builder import build_taxatree_html  # type: ignore  # noqa: E402
from taxatree.labels import decorate, to_plain_text  # type: ignore  # noqa: E402
from taxatree.outline import parse_outline, summarize_outline  # type: ignore  # noqa: E402

# ---------------------------------------------------------------------------
# Flask application and logging
# ---------------------------------------------------------------------------

application = Flask(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s in %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

TAXATREE_CONFIGURATION = TaxatreeConfig()

SERVICE_FORMATS = ("newick", "nhx", "phyloxml", "csv_nodes", "csv_edges")


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------


def forest_from_payload(payload: Dict[str, Any], taxatree_configuration: TaxatreeConfig) -> List[TaxonNode]:
    """
    Read the tree to convert from a request payload.

    The payload carries either a graph object under "graph" or outline text
    under "markdown". The graph wins when both are present.
    """
    graph = payload.get("graph")
    if graph is not None:
        return forest_from_graph(graph)

    markdown = payload.get("markdown")
    if isinstance(markdown, str) and markdown.strip():
        return parse_outline(markdown, taxatree_configuration.max_outline_depth)

    raise ExportError("Payload must contain a 'graph' object or 'markdown' text")


def convert_payload(
    payload: Dict[str, Any],
    export_format: str,
    taxatree_configuration: TaxatreeConfig,
) -> str:
    """
    Convert a graph or outline payload to one of SERVICE_FORMATS.

    Graph payloads go straight to phyloXML and CSV without a round trip
    through the forest, so their node ids are kept.
    """
    fallback_label = payload.get("rootLabel") or taxatree_configuration.fallback_root_label
    graph = payload.get("graph")

    if graph is not None and export_format == "phyloxml":
        return graph_to_phyloxml(graph, fallback_label)
    if graph is not None and export_format in ("csv_nodes", "csv_edges"):
        return graph_to_csv(graph, export_format.split("_", 1)[1])

    forest = forest_from_payload(payload, taxatree_configuration)
    if not forest:
        raise ExportError("Nothing to export: the tree is empty")

    if export_format in ("csv_nodes", "csv_edges"):
        return export_tabular(forest, export_format.split("_", 1)[1])

    return export_phylogenetic(
        forest,
        export_format,
        fallback_root_label=fallback_label,
        include_internal_labels=bool(payload.get("includeInternalLabels", False)),
        cfg=taxatree_configuration,
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@application.route("/", methods=["GET"])
def index():
    """
    Interactive tree of the configured rows file.

    In development, this rebuilds the HTML on each request.
    """
    rows_path = TAXATREE_CONFIGURATION.rows_path
    if not Path(rows_path).exists():
        return jsonify({"error": f"No rows file at {rows_path}"}), 404

    try:
        rows = load_rows(rows_path, TAXATREE_CONFIGURATION)
        html_string = build_taxatree_html(rows=rows, cfg=TAXATREE_CONFIGURATION)
    except Exception as exception:
        logger.exception("Failed to build the Taxatree page")
        return jsonify({"error": str(exception)}), 500

    return html_string


@application.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})


@application.route("/build-taxonomy", methods=["POST"])
def build_taxonomy():
    """
    Build an outline from flat taxon rows.

    Expected JSON payload:

    {
      "rows": [
        {"taxon_id": 9681, "name": "Felidae", "rank": "family",
         "parent_id": 379584, "ancestor_ids": [48460, 1, 2, 355675]},
        ...
      ],
      "baseId": 9681
    }

    The response holds the renderer form of the outline ("markdown"), its
    plain-text form, the rank summary and the ids that were dropped because
    they were not reachable from baseId.
    """
    payload: Dict[str, Any] | None = request.get_json(silent=True)
    if not payload:
        return jsonify({"error": "Request body must be JSON"}), 400

    rows = payload.get("rows")
    if not isinstance(rows, list):
        return jsonify({"error": "'rows' must be a list of taxon rows"}), 400

    base_id = payload.get("baseId")
    try:
        base_id = int(base_id) if base_id not in (None, "") else None
    except (TypeError, ValueError):
        return jsonify({"error": f"'baseId' must be an integer, got {base_id!r}"}), 400

    try:
        result = build_forest(rows, base_id, TAXATREE_CONFIGURATION)
    except ValueError as exception:
        return jsonify({"error": str(exception)}), 400
    except Exception as exception:
        logger.exception("Failed to build taxonomy")
        return jsonify({"error": str(exception)}), 500

    logger.info(
        "Built taxonomy from %d rows (%d roots, %d dropped)",
        len(rows),
        len(result.roots),
        len(result.dropped_ids),
    )
    return jsonify(
        {
            "markdown": decorate(result.outline),
            "plainMarkdown": to_plain_text(result.outline),
            "stats": summarize_outline(result.outline),
            "droppedIds": list(result.dropped_ids),
        }
    )


@application.route("/export", methods=["POST"])
def export():
    """
    Convert a tree to a download format.

    The format comes from the "format" query parameter and is one of
    newick, nhx, phyloxml, csv_nodes or csv_edges. The body is JSON with a
    "graph" object ({nodes, edges}) or "markdown" outline text, and an
    optional "rootLabel" and "includeInternalLabels".
    """
    export_format = (request.args.get("format") or "").lower()
    if export_format not in SERVICE_FORMATS:
        return jsonify({"error": f"Unsupported format {export_format!r}; expected one of {list(SERVICE_FORMATS)}"}), 400

    payload: Dict[str, Any] | None = request.get_json(silent=True)
    if not payload:
        return jsonify({"error": "Request body must be JSON"}), 400

    try:
        text = convert_payload(payload, export_format, TAXATREE_CONFIGURATION)
    except ExportError as exception:
        return jsonify({"error": str(exception)}), 400
    except Exception as exception:
        logger.exception("Failed to export %s", export_format)
        return jsonify({"error": str(exception)}), 500

    extension, content_type = EXPORT_FORMATS[export_format]
    file_name = export_file_name(payload.get("title") or "tree", extension)
    response = Response(text, content_type=f"{content_type}; charset=utf-8")
    response.headers["Content-Disposition"] = f'attachment; filename="{file_name}"'
    return response


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    # For local development. In production, a WSGI server should be used instead.
    application.run(host="127.0.0.1", port=5000, debug=True)
