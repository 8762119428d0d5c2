"""Research Engine

Simple CLI for running research queries.
"""

import argparse
import asyncio
import json

from research_engine.agents.orchestrator import ResearchOrchestrator, ensure_collections
from research_engine.models.research import ResearchMode, ResearchOptions


async def run_research(
    query: str,
    mode: str,
    tenant_id: str | None,
    collections: list[str] | None,
    no_web: bool,
    as_json: bool,
):
    """Run research on the given query."""
    orchestrator = ResearchOrchestrator()
    options = ResearchOptions(
        collections=collections,
        include_web=not no_web,
    )
    envelope = await orchestrator.run_research(query, ResearchMode(mode), options, tenant_id=tenant_id)

    if as_json:
        print(envelope.model_dump_json(indent=2))
        return

    print(f"Research query: {query}")
    print("-" * 50)
    print(f"\n[*] Research questions ({len(envelope.research_questions)}):")
    for i, question in enumerate(envelope.research_questions, 1):
        label = f" [{question.category}]" if question.category else ""
        print(f"  {i}. {question.question}{label}")

    print(f"\n[+] Sources by category:")
    for label, sources in envelope.categories.items():
        print(f"  {label}: {len(sources)}")

    meta = envelope.metadata
    print(f"\n[*] Research {envelope.status} ({meta.outcome})")
    print(f"   Runtime: {meta.duration_ms}ms")
    print(f"   Sources: {len(envelope.sources)}")
    print(f"   Citations: {len(envelope.citations)}")
    if meta.unknown_collections:
        print(f"   Unknown collections: {', '.join(meta.unknown_collections)}")
    if meta.skipped_collections:
        print(f"   Skipped collections (no tenant): {', '.join(meta.skipped_collections)}")
    for error in meta.errors:
        print(f"   [!] {error}")

    text = envelope.dossier or envelope.summary
    if text:
        print(f"\n{'='*50}")
        print("DOSSIER:" if envelope.dossier else "SUMMARY:")
        print(f"{'='*50}")
        print(text)
        print("\nQuellen:")
        for citation in envelope.citations:
            ref = citation.url or citation.document_title
            print(f"  [{citation.index}] {citation.document_title} - {ref}")
    elif envelope.message:
        print(f"\n[!] {envelope.message}")


async def init_collections():
    orchestrator = ResearchOrchestrator()
    created = await ensure_collections(orchestrator.registry, orchestrator.vector.store)
    print(json.dumps({"collections": created}, indent=2))


def main():
    parser = argparse.ArgumentParser(description="Research Engine")
    parser.add_argument("--query", "-q", help="Research query")
    parser.add_argument("--mode", "-m", choices=["normal", "deep"], default="normal")
    parser.add_argument("--tenant", "-t", help="Tenant id for tenant-scoped collections")
    parser.add_argument(
        "--collection", "-c", action="append", help="Collection name or system collection id (repeatable)"
    )
    parser.add_argument("--no-web", action="store_true", help="Skip live web search")
    parser.add_argument("--json", action="store_true", help="Print the raw result envelope")
    parser.add_argument("--init-collections", action="store_true", help="Create all registered collections")

    args = parser.parse_args()

    if args.init_collections:
        asyncio.run(init_collections())
        return
    if not args.query:
        parser.error("--query is required")

    asyncio.run(
        run_research(args.query, args.mode, args.tenant, args.collection, args.no_web, args.json)
    )


if __name__ == "__main__":
    main()
