from __future__ import annotations

"""
Command line interface to build and export a Taxatree tree.

This script reads taxon rows (or an existing outline), builds the tree and
writes it in one of the export formats.

Expected project layout:

  project_root/
    scripts/
      build_taxatree.py
    src/
      taxatree/
        __init__.py
        config.py
        data_io.py
        graph.py
        ...
    web/
      app.py
    data/
      taxa_rows.(csv|tsv|xlsx|json)

Usage examples (from project_root):

  python scripts/build_taxatree.py data/taxa_rows.csv
  python scripts/build_taxatree.py data/taxa_rows.json --base-id 41944 --format newick
  python scripts/build_taxatree.py felidae.md --format html --output web/felidae.html
  python scripts/build_taxatree.py data/taxa_rows.csv --format png --scale 3
  python scripts/build_taxatree.py data/taxa_rows.csv --dry-run --log-level DEBUG

Inputs ending in .md, .txt or .outline are read as outline text; anything
else is loaded as a row table. In dry run mode the export is written to
standard output instead of a file.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

# ---------------------------------------------------------------------------
# Path setup so "taxatree" can be imported when running this file directly
# ---------------------------------------------------------------------------

CURRENT_FILE_PATH: Path = Path(__file__).resolve()
PROJECT_ROOT_DIRECTORY: Path = CURRENT_FILE_PATH.parents[1]
SOURCE_DIRECTORY: Path = PROJECT_ROOT_DIRECTORY / "src"

if str(SOURCE_DIRECTORY) not in sys.path:
  sys.path.insert(0, str(SOURCE_DIRECTORY))

from taxatree.config import TaxatreeConfig  # type: ignore  # noqa: E402
from taxatree.data_io import load_rows  # type: ignore  # noqa: E402
from taxatree.export import export_file_name, write_export  # type: ignore  # noqa: E402
from taxatree.manager import TreeManager  # type: ignore  # noqa: E402


OUTLINE_SUFFIXES = {".md", ".txt", ".outline"}

# --format value -> (TreeManager export kind, file extension)
OUTPUT_FORMATS: Dict[str, Tuple[str, str]] = {
    "outline": ("outline", "md"),
    "plain": ("plain", "txt"),
    "newick": ("newick", "nwk"),
    "nhx": ("nhx", "nhx"),
    "phyloxml": ("phyloxml", "xml"),
    "nodes-csv": ("csv_nodes", "csv"),
    "edges-csv": ("csv_edges", "csv"),
    "html": ("html", "html"),
    "png": ("png", "png"),
}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def parse_command_line_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
  """
  Parse command line arguments for the build_taxatree script.

  Returns
  -------
  argparse.Namespace
      An object with attributes:
        - input_path: str, rows file or outline file to read
        - base_id: int or None, taxon id to force as the sole root
        - output_format: str, one of OUTPUT_FORMATS
        - output_path: str or None, where to write the export
        - include_internal_labels: bool, label internal Newick nodes
        - scale: float, raster scale for png output
        - log_level: str, logging level name
        - dry_run: bool, whether to write to standard output instead of a file
  """
  argument_parser = argparse.ArgumentParser(
      description="Build a taxonomy tree from flat rows and export it."
  )

  argument_parser.add_argument(
      "input_path",
      help="Row table (.csv, .tsv, .xlsx, .json) or outline file (.md, .txt).",
  )

  argument_parser.add_argument(
      "--base-id",
      dest="base_id",
      type=int,
      default=None,
      help="Taxon id to use as the sole root. Unreachable taxa are dropped.",
  )

  argument_parser.add_argument(
      "-f",
      "--format",
      dest="output_format",
      default="outline",
      choices=sorted(OUTPUT_FORMATS),
      help="Export format. Defaults to outline.",
  )

  argument_parser.add_argument(
      "-o",
      "--output",
      dest="output_path",
      default=None,
      help="Path to write the export. Defaults to a timestamped file in the current directory.",
  )

  argument_parser.add_argument(
      "--include-internal-labels",
      dest="include_internal_labels",
      action="store_true",
      help="Label internal nodes in Newick and NHX output.",
  )

  argument_parser.add_argument(
      "--scale",
      dest="scale",
      type=float,
      default=2.0,
      help="Raster scale for png output. Defaults to 2.0.",
  )

  argument_parser.add_argument(
      "--log-level",
      dest="log_level",
      default="INFO",
      choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
      help="Logging verbosity. Defaults to INFO.",
  )

  argument_parser.add_argument(
      "--dry-run",
      dest="dry_run",
      action="store_true",
      help="If provided, write the export to standard output instead of a file.",
  )

  return argument_parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Main build routine
# ---------------------------------------------------------------------------


def configure_logging(log_level_name: str) -> None:
  """
  Configure global logging for the script.

  Parameters
  ----------
  log_level_name
      One of "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL".
  """
  log_level = getattr(logging, log_level_name.upper(), logging.INFO)
  logging.basicConfig(
      level=log_level,
      format="[%(asctime)s] %(levelname)s in %(name)s: %(message)s",
  )


def build_export(arguments: argparse.Namespace) -> bytes:
  """
  Build the tree described by the arguments and return the export bytes.

  No event loop is running here, so the first render happens inline when
  the tree is added.
  """
  logger = logging.getLogger(__name__)
  configuration = TaxatreeConfig(
      raster_scale=arguments.scale,
      include_internal_labels=arguments.include_internal_labels,
  )
  manager = TreeManager(configuration, id_prefix="cli")

  input_path = Path(arguments.input_path)
  title = input_path.stem

  if input_path.suffix.lower() in OUTLINE_SUFFIXES:
    outline_text = input_path.read_text(encoding="utf-8")
    tree_id = manager.add_tree(title, outline=outline_text)
  else:
    rows = load_rows(input_path, configuration)
    tree_id = manager.add_tree(title, rows=rows, base_id=arguments.base_id)

  tree = manager.get(tree_id)
  if tree.dropped_ids:
    logger.info("%d taxa were not reachable from base id %s", len(tree.dropped_ids), arguments.base_id)

  kind, _ = OUTPUT_FORMATS[arguments.output_format]
  data = manager.export(tree_id, kind)
  manager.close()

  logger.info("Built %s export (%d bytes)", arguments.output_format, len(data))
  return data


def write_output(data: bytes, arguments: argparse.Namespace) -> None:
  """
  Write the export to the requested destination.

  Parameters
  ----------
  data
      The encoded export.
  arguments
      Parsed arguments; output_path and dry_run decide the destination.
  """
  logger = logging.getLogger(__name__)

  if arguments.dry_run:
    logger.info("Dry run enabled; writing export to standard output.")
    sys.stdout.buffer.write(data)
    if not data.endswith(b"\n"):
      sys.stdout.buffer.write(b"\n")
    sys.stdout.flush()
    return

  _, extension = OUTPUT_FORMATS[arguments.output_format]
  output_path: Union[str, Path] = arguments.output_path or (
      Path.cwd() / export_file_name(Path(arguments.input_path).stem, extension)
  )

  written = write_export(Path(output_path).resolve(), data)
  logger.info("Wrote %s export to %s", arguments.output_format, written)


def main(argv: Optional[List[str]] = None) -> int:
  """
  Entrypoint for the build_taxatree command line script.

  Returns
  -------
  int
      Process exit code. Zero indicates success.
  """
  arguments = parse_command_line_arguments(argv)
  configure_logging(arguments.log_level)

  logger = logging.getLogger(__name__)
  logger.debug("Command line arguments: %s", arguments)

  try:
    data = build_export(arguments)
    write_output(data, arguments)
  except Exception as exception:
    logger.exception("Failed to build Taxatree export: %s", exception)
    return 1

  return 0


if __name__ == "__main__":
  sys.exit(main())
