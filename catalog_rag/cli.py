"""
Command line entry point.

    catalog-rag build --source reviews.csv --column review_text
    catalog-rag ask "latte" -k 3
    catalog-rag serve --port 8000

Settings not given on the command line come from CATALOG_RAG_* environment
variables (see catalog_rag.config).
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import RAGConfig
from .errors import PipelineError, RAGError
from .pipeline import RAGPipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="catalog-rag", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--index-dir", help="Directory holding the vector index")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Embed a review corpus into the index")
    build.add_argument("--source", help="Delimited file with a header row")
    build.add_argument("--column", help="Name of the review text column")
    build.add_argument("--delimiter", help="Field delimiter (default ',')")

    ask = sub.add_parser("ask", help="Answer a query against the index")
    ask.add_argument("query", help="Query text")
    ask.add_argument("-k", "--top-k", type=int, dest="top_k", help="Reviews to retrieve")
    ask.add_argument("--sources", action="store_true", help="Print retrieved reviews and metadata as JSON")

    serve = sub.add_parser("serve", help="Serve POST /answer over HTTP")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = RAGConfig.from_env(
            index_dir=args.index_dir,
            log_level=args.log_level,
            corpus_path=getattr(args, "source", None),
            text_column=getattr(args, "column", None),
            delimiter=getattr(args, "delimiter", None),
        )
    except ValueError as exc:
        print(f"error: invalid configuration: {exc}", file=sys.stderr)
        return 2
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        import uvicorn

        from .server import create_app

        uvicorn.run(create_app(config=config), host=args.host, port=args.port)
        return 0

    try:
        with RAGPipeline.from_config(config) as pipeline:
            if args.command == "build":
                if not config.corpus_path:
                    print("error: no corpus given (--source or CATALOG_RAG_CORPUS_PATH)", file=sys.stderr)
                    return 2
                count = pipeline.build_index(config.corpus_path)
                print(f"Indexed {count} reviews.")
            else:
                result = pipeline.run(args.query, k=args.top_k)
                if args.sources:
                    print(json.dumps(
                        {"answer": result.answer, "sources": result.sources, "metadata": result.metadata},
                        indent=2,
                    ))
                else:
                    print(result.answer)
    except PipelineError as exc:
        print(f"error [{exc.stage}/{exc.cause_code}]: {exc.cause}", file=sys.stderr)
        return 1
    except RAGError as exc:
        print(f"error [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"error: invalid configuration: {exc}", file=sys.stderr)
        return 2
    return 0
