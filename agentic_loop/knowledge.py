from dataclasses import dataclass, field


@dataclass
class KnowledgeResult:
    content: str
    score: float
    source: str = ""
    metadata: dict = field(default_factory=dict)


class KnowledgeRetriever:
    async def retrieve(self, query: str) -> list[KnowledgeResult]:
        """Return ranked passages relevant to `query`, best first."""
        raise NotImplementedError


def format_knowledge(results: list[KnowledgeResult]) -> str:
    return "\n\n".join(
        f"[{result.source}] {result.content}" if result.source else result.content
        for result in results
    )
