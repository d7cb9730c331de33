"""Tools for the research -> write -> review sample pipeline."""

from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
)

from stepwise.tools.registry import (
    ToolDescriptor,
    param,
)

DEFAULT_KNOWLEDGE: Mapping[str, str] = {
    "artificial intelligence": (
        "AI is a branch of computer science concerned with building systems that "
        "imitate human intelligence."
    ),
    "machine learning": (
        "Machine learning is a subset of AI in which algorithms improve automatically "
        "from data and experience."
    ),
    "deep learning": (
        "Deep learning uses multi-layer neural networks to model complex data and is one "
        "approach to machine learning."
    ),
}


def research_tools(knowledge: Optional[Mapping[str, str]] = None) -> List[ToolDescriptor]:
    """Tools for the researcher stage."""
    base = {key.lower(): value for key, value in (knowledge or DEFAULT_KNOWLEDGE).items()}

    def research_topic(args: Dict[str, Any]) -> str:
        topic = args["topic"]
        return base.get(topic.strip().lower(), f"No information found about '{topic}'.")

    return [
        ToolDescriptor(
            name="research_topic",
            description="Look up background information about a topic.",
            handler=research_topic,
            parameters=(param("topic", "string", description="Topic to research"),),
        )
    ]


def writer_tools() -> List[ToolDescriptor]:
    """Tools for the writer stage."""

    def write_article(args: Dict[str, Any]) -> str:
        return (
            f"Introduction to {args['topic']}\n\n{args['content']}\n\n"
            "This is a fast-moving field that rewards further study."
        )

    return [
        ToolDescriptor(
            name="write_article",
            description="Write a short article about a topic from reference material.",
            handler=write_article,
            parameters=(
                param("topic", "string", description="Article topic"),
                param("content", "string", description="Reference material"),
            ),
        )
    ]


def editor_tools() -> List[ToolDescriptor]:
    """Tools for the editor stage."""

    def review_content(args: Dict[str, Any]) -> str:
        return f"Review complete.\n\n{args['article']}\n\n[Editor: clear overall; add examples.]"

    return [
        ToolDescriptor(
            name="review_content",
            description="Review an article and suggest improvements.",
            handler=review_content,
            parameters=(param("article", "string", description="Article text"),),
        )
    ]
