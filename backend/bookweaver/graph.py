"""
BookWeaver — Batch Post-Processing Graph
========================================
Per-chapter review pipeline applied to every batch result before it is
merged into the narrative state:

    START → consistency → edit → extract → END

The consistency verdict is advisory; the edited text always replaces
the draft. Extraction runs on the edited text so later chapters are
checked against characters and plot points introduced here.
"""

from __future__ import annotations

from langgraph.graph import END, START, StateGraph

from bookweaver import agents
from bookweaver.executor import PageExecutor
from bookweaver.narrative import NarrativeState
from bookweaver.state import ChapterReviewState


def build_review_graph(service, executor: PageExecutor, state: NarrativeState):
    """
    Compile the review graph bound to one run's service and narrative state.

    Returns
    -------
    CompiledGraph
        Ready to invoke with ``{"chapter": n, "draft": "..."}``
    """

    def consistency_node(review: ChapterReviewState) -> dict:
        report = agents.check_consistency(
            service, review["draft"], state.characters_table(), state.plot_points
        )
        print(f"[Review] 🔍 Chapter {review['chapter']} consistency checked")
        return {"consistency_report": report}

    def edit_node(review: ChapterReviewState) -> dict:
        edited = agents.edit_and_proofread(service, review["draft"])
        print(f"[Review] ✏️  Chapter {review['chapter']} edited ({len(edited)} chars)")
        return {"edited": edited}

    def extract_node(review: ChapterReviewState) -> dict:
        return {"extracted": executor.extract_metadata(review["edited"])}

    builder = StateGraph(ChapterReviewState)

    # --- Register nodes ---
    builder.add_node("consistency", consistency_node)
    builder.add_node("edit", edit_node)
    builder.add_node("extract", extract_node)

    # --- Define edges ---
    builder.add_edge(START, "consistency")
    builder.add_edge("consistency", "edit")
    builder.add_edge("edit", "extract")
    builder.add_edge("extract", END)

    return builder.compile()
