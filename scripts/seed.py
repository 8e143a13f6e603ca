#!/usr/bin/env python3
"""Seed script to populate a graph with a small ML curriculum.

Usage:
    GRAPH_TUTOR_HOME=/path/to/home python scripts/seed.py

    # Or with default home (~/.graph-tutor):
    python scripts/seed.py
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from graph_tutor.config import configure_logging, load_settings
from graph_tutor.engine import TutorEngine


def seed_curriculum(engine: TutorEngine) -> dict[str, str]:
    """Seed concepts and prerequisite edges directly. Returns title -> id."""
    concepts = [
        ("Linear Algebra", "Concept", "Vectors, matrices and linear maps.", [
            "Matrix multiplication composes linear maps",
            "Dot products measure alignment",
        ]),
        ("Calculus", "Concept", "Rates of change and accumulation.", [
            "The derivative is the local slope",
            "The chain rule differentiates compositions",
        ]),
        ("Gradient Descent", "Method", "Iteratively step against the gradient to minimise a loss.", [
            "Learning rate controls step size",
            "Converges to a local minimum for smooth losses",
        ]),
        ("Backpropagation", "Method", "Apply the chain rule backwards through a network.", [
            "Reuses intermediate activations from the forward pass",
        ]),
        ("Attention", "Method", "Weight values by query-key similarity.", [
            "Scaled by sqrt(d_k) to keep softmax gradients healthy",
        ]),
        ("Transformers", "Concept", "Sequence models built from stacked attention layers.", []),
    ]
    ids = {}
    for title, kind, l0, l1 in concepts:
        ids[title] = engine.create_concept(title, kind=kind, module="ml", l0=l0, l1=l1).id

    edges = [
        ("Linear Algebra", "Gradient Descent", "PREREQUISITE_OF"),
        ("Calculus", "Gradient Descent", "PREREQUISITE_OF"),
        ("Gradient Descent", "Backpropagation", "PREREQUISITE_OF"),
        ("Backpropagation", "Transformers", "PREREQUISITE_OF"),
        ("Linear Algebra", "Attention", "PREREQUISITE_OF"),
        ("Attention", "Transformers", "PART_OF"),
    ]
    for from_title, to_title, edge_type in edges:
        engine.create_edge(ids[from_title], ids[to_title], edge_type)

    print(f"Created {len(ids)} concepts and {len(edges)} edges")
    return ids


def seed_sources(engine: TutorEngine, ids: dict[str, str]) -> None:
    source = engine.create_source(
        "https://arxiv.org/abs/1706.03762", title="Attention Is All You Need"
    )
    engine.create_chunk(source.id, "An attention function maps a query and key-value pairs to an output.")
    engine.attach_source(ids["Attention"], source.id)
    engine.attach_source(ids["Transformers"], source.id)

    engine.create_review_item(
        ids["Attention"],
        "Attention logits are divided by ___ before the softmax.",
        answer="sqrt(d_k)",
        rubric="Mentions the key dimension.",
    )
    print("Added one source and a review item")


def seed_draft_changeset(engine: TutorEngine, ids: dict[str, str]) -> None:
    """Stage a draft for review so the changeset commands have something to show."""
    cs, items = engine.stage_changeset({
        "concepts": [{
            "id": "concept_momentum",
            "title": "Momentum",
            "kind": "Method",
            "module": "ml",
            "l0": "Accumulate a velocity of past gradients.",
        }],
        "edges": [{
            "from_concept_id": ids["Gradient Descent"],
            "to_concept_id": "concept_momentum",
            "type": "PREREQUISITE_OF",
        }],
    })
    print(f"Staged {cs.id} with {len(items)} pending items")


def main():
    settings = load_settings(actor="seed-script")
    configure_logging(settings)

    print(f"Seeding graph at: {settings.db_path}")
    engine = TutorEngine.from_settings(settings)
    try:
        existing = engine.get_stats()["concepts"]
        if existing > 0:
            print(f"Warning: Graph already has {existing} concepts")
            response = input("Continue and add more? [y/N] ")
            if response.lower() != "y":
                print("Aborted")
                return

        ids = seed_curriculum(engine)
        seed_sources(engine, ids)
        seed_draft_changeset(engine, ids)

        stats = engine.get_stats()
        print(f"\nFinal state: {stats['concepts']} concepts, {stats['edges']} edges")
        print(f"Log file: {settings.log_file}")
    finally:
        engine.close()


if __name__ == "__main__":
    main()
