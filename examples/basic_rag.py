"""
examples/basic_rag.py
---------------------
Minimal end-to-end demo of the catalog RAG pipeline.

This script shows the three-step workflow:
  1. Build the index from a CSV of customer reviews.
  2. Ask about an item.
  3. Print the answer with the reviews it was based on.

Usage:
    # Embeddings run locally. For generation either set OPENAI_API_KEY, or
    # point CATALOG_RAG_LLM_BASE_URL at a local OpenAI-compatible server, e.g.
    #   CATALOG_RAG_LLM_BASE_URL=http://localhost:11434/v1 CATALOG_RAG_LLM_MODEL=llama3
    python examples/basic_rag.py
"""

import csv
import logging
import sys
import textwrap
from pathlib import Path

# Allow running from the repo root without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from catalog_rag import RAGConfig, RAGPipeline, RAGError  # noqa: E402

SAMPLE_REVIEWS = [
    ("latte", "The latte was smooth and the foam was perfect."),
    ("latte", "Great latte, a little too hot to drink right away."),
    ("latte", "Latte was smooth but small for the price."),
    ("espresso", "Espresso was strong and bitter, exactly how I like it."),
    ("espresso", "The espresso tasted burnt today."),
    ("croissant", "Flaky croissant, buttery and fresh out of the oven."),
    ("croissant", "Croissant was stale by noon."),
]


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # ------------------------------------------------------------------
    # 1.  Configuration
    # ------------------------------------------------------------------
    here = Path(__file__).parent
    corpus = here / "sample_reviews.csv"
    if not corpus.exists():
        _write_sample_corpus(corpus)

    config = RAGConfig.from_env(
        corpus_path=str(corpus),
        index_dir=str(here / "catalog_index"),
        embedding_model="local:all-MiniLM-L6-v2",
        top_k=3,
    )

    # ------------------------------------------------------------------
    # 2.  Build the index and ask
    # ------------------------------------------------------------------
    try:
        with RAGPipeline.from_config(config) as pipeline:
            count = pipeline.build_index(config.corpus_path)
            print(f"[demo] Indexed {count} reviews.\n")

            for query in ["latte", "croissant"]:
                print(f"Query: {query}")
                result = pipeline.run(query)
                print(f"Answer:\n{textwrap.indent(result.answer, '  ')}\n")

                for source in result.sources:
                    print(f"  (score={source['score']:.3f}) {source['text']}")

                meta = result.metadata
                print(
                    f"[tokens: {meta['prompt_tokens']}+{meta['completion_tokens']} "
                    f"| latency: {meta['latency_ms']:.0f}ms]\n"
                )
                print("-" * 70)
    except (RAGError, ValueError) as exc:
        raise SystemExit(f"Error: {exc}")


def _write_sample_corpus(path: Path) -> None:
    """Create a tiny review corpus so the demo works out of the box."""
    with open(path, "w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(["item", "review_text"])
        writer.writerows(SAMPLE_REVIEWS)
    print(f"[demo] Created sample corpus: {path}")


if __name__ == "__main__":
    main()
