import asyncio

from agent_chat.agent.tools import doc_search_descriptor
from agent_chat.agent.registry import ToolRegistry
from agent_chat.retrieval.retriever import NO_RESULTS, DocumentRetriever


def test_tool_observer_captures_latency_and_payload(store, embedder, agent_id) -> None:
    registry = ToolRegistry(retriever=DocumentRetriever(store, embedder))
    registry.register(doc_search_descriptor(agent_id))

    observed = []
    registry.set_observer(observed.append)
    result = asyncio.run(registry.invoke("doc_search", {"query": "refund policy"}))
    registry.set_observer(None)
    asyncio.run(registry.invoke("doc_search", {"query": "again"}))

    assert result == NO_RESULTS
    assert len(observed) == 1
    assert observed[0].name == "doc_search"
    assert observed[0].input_payload == {"query": "refund policy"}
    assert observed[0].output_preview == NO_RESULTS
    assert observed[0].latency_ms >= 0.0
