"""
Knowledge Base

Categorized documents that ground Cora's answers: parenting research,
positive education, nonviolent communication and app FAQs.
"""

import logging
import re
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import InvalidCategory
from .models import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Document:
    """A single knowledge document."""
    document_id: str
    title: str
    content: str
    source: str = ""
    category_id: Optional[str] = None
    date_added: datetime = field(default_factory=utcnow)
    processed: bool = False

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on title or content."""
        query_lower = query.lower()
        return query_lower in self.title.lower() or query_lower in self.content.lower()

    def relevance(self, terms: Iterable[str]) -> float:
        """Score how well this document matches a set of terms (0-1)."""
        terms = list(terms)
        if not terms:
            return 0.0

        title_lower = self.title.lower()
        content_lower = self.content.lower()
        score = 0.0

        for term in terms:
            # Title hits weigh more than content hits
            if term in title_lower:
                score += 0.6
            elif term in content_lower:
                score += 0.4

        return min(score / len(terms), 1.0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "document_id": self.document_id,
            "title": self.title,
            "content": self.content,
            "source": self.source,
            "category_id": self.category_id,
            "date_added": self.date_added.isoformat(),
            "processed": self.processed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        """Rebuild a document from `to_dict` output."""
        return cls(
            document_id=data["document_id"],
            title=data["title"],
            content=data["content"],
            source=data.get("source", ""),
            category_id=data.get("category_id"),
            date_added=datetime.fromisoformat(data["date_added"]),
            processed=bool(data.get("processed", False)),
        )


@dataclass
class Category:
    """A knowledge category with the ids of the documents filed in it."""
    category_id: str
    name: str
    document_ids: List[str] = field(default_factory=list)


DEFAULT_CATEGORIES: List[Tuple[str, str]] = [
    ("child_dev", "Child Development"),
    ("positive_education", "Positive Education"),
    ("nonviolent_communication", "Nonviolent Communication"),
    ("app_faq", "App FAQ"),
]

_WORD_RE = re.compile(r"\w+", re.UNICODE)


class KnowledgeBase:
    """
    Knowledge base for the assistant.

    The category set is fixed at construction. Documents are append-only;
    the only mutation after creation is the processed flag, flipped once by
    `process_documents`.
    """

    def __init__(self, categories: Optional[Iterable[Tuple[str, str]]] = None):
        """
        Initialize the knowledge base.

        Args:
            categories: (category_id, name) pairs; defaults to DEFAULT_CATEGORIES
        """
        self._categories: Dict[str, Category] = {
            category_id: Category(category_id=category_id, name=name)
            for category_id, name in (categories or DEFAULT_CATEGORIES)
        }
        self._documents: Dict[str, Document] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    def add_document(
        self,
        title: str,
        content: str,
        category_id: Optional[str] = None,
        source: str = "",
    ) -> Document:
        """
        Add a document to the knowledge base.

        Args:
            title: Document title
            content: Document body
            category_id: Category to file the document in (None = unfiled)
            source: Where the document came from

        Returns:
            The stored document

        Raises:
            InvalidCategory: If category_id is given but does not exist
        """
        with self._lock:
            if category_id is not None and category_id not in self._categories:
                logger.warning("Rejected document %r: unknown category %r", title, category_id)
                raise InvalidCategory(category_id)

            document = Document(
                document_id=f"doc_{uuid.uuid4().hex[:16]}",
                title=title,
                content=content,
                source=source,
                category_id=category_id,
            )
            self._documents[document.document_id] = document
            if category_id is not None:
                self._categories[category_id].document_ids.append(document.document_id)

        logger.debug("Added document %s (%s)", document.document_id, category_id or "unfiled")
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        """Get a document by id."""
        with self._lock:
            return self._documents.get(document_id)

    def process_documents(
        self,
        processor: Optional[Callable[[List[Document]], None]] = None,
    ) -> List[Document]:
        """
        Mark every unprocessed document as processed.

        Args:
            processor: Optional indexing hook called with the batch before
                the documents are flipped. If it raises, nothing is flipped.

        Returns:
            The batch of documents that were processed by this call
        """
        with self._lock:
            pending = [d for d in self._documents.values() if not d.processed]
            if not pending:
                return []

            if processor is not None:
                processor(pending)

            batch = []
            for document in pending:
                updated = replace(document, processed=True)
                self._documents[document.document_id] = updated
                batch.append(updated)

        logger.info("Processed %d knowledge documents", len(batch))
        return batch

    def search_documents(self, query: str, category_id: Optional[str] = None) -> List[Document]:
        """
        Search documents by title or content.

        Matching is a case-insensitive substring test. Results keep
        insertion order.

        Raises:
            InvalidCategory: If category_id is given but does not exist
        """
        with self._lock:
            if category_id is not None and category_id not in self._categories:
                raise InvalidCategory(category_id)

            documents = list(self._documents.values())

        if category_id is not None:
            documents = [d for d in documents if d.category_id == category_id]

        return [d for d in documents if d.matches(query)]

    def relevant_documents(self, text: str, max_results: int = 3) -> List[Tuple[Document, float]]:
        """
        Rank documents by word overlap with free text.

        Returns list of (document, score) tuples sorted by relevance.
        """
        terms = {w for w in _WORD_RE.findall(text.lower()) if len(w) > 3}
        if not terms:
            return []

        with self._lock:
            documents = list(self._documents.values())

        results = []
        for document in documents:
            score = document.relevance(terms)
            if score > 0:
                results.append((document, score))

        # Stable sort keeps insertion order among equal scores
        results.sort(key=lambda x: x[1], reverse=True)

        return results[:max_results]

    def get_context_for_query(self, text: str, max_documents: int = 3) -> str:
        """
        Get relevant knowledge as context for a query.

        Returns formatted string to include in the prompt.
        """
        results = self.relevant_documents(text, max_results=max_documents)

        if not results:
            return ""

        context_parts = ["Relevant knowledge:"]
        for document, _ in results:
            source = f" (source: {document.source})" if document.source else ""
            context_parts.append(f"\n## {document.title}{source}\n{document.content}")

        return "\n".join(context_parts)

    # =========================================================================
    # CATEGORIES & STATS
    # =========================================================================

    def list_categories(self) -> List[Dict[str, Any]]:
        """List categories with their document counts."""
        with self._lock:
            return [
                {
                    "category_id": c.category_id,
                    "name": c.name,
                    "document_count": len(c.document_ids),
                }
                for c in self._categories.values()
            ]

    def has_category(self, category_id: str) -> bool:
        """Check whether a category exists."""
        return category_id in self._categories

    def get_stats(self) -> Dict[str, Any]:
        """Get knowledge base statistics."""
        with self._lock:
            documents = list(self._documents.values())
            return {
                "total_documents": len(documents),
                "processed_documents": sum(1 for d in documents if d.processed),
                "categories_count": len(self._categories),
                "documents_by_category": [
                    {
                        "category_id": c.category_id,
                        "category": c.name,
                        "count": len(c.document_ids),
                    }
                    for c in self._categories.values()
                ],
            }

    @property
    def document_count(self) -> int:
        """Get number of documents."""
        return len(self._documents)

    # =========================================================================
    # PERSISTENCE HOOKS
    # =========================================================================

    def dump(self) -> Dict[str, Any]:
        """Snapshot documents and category filings as JSON-compatible data."""
        with self._lock:
            return {
                "documents": [d.to_dict() for d in self._documents.values()],
                "categories": {
                    c.category_id: list(c.document_ids) for c in self._categories.values()
                },
            }

    def load(self, data: Dict[str, Any]) -> int:
        """
        Rehydrate documents from a `dump` snapshot.

        Documents already present (same id) are skipped. Returns the number
        of documents loaded.

        Raises:
            InvalidCategory: If a document references an unknown category.
                Nothing is loaded in that case.
        """
        incoming = [Document.from_dict(d) for d in data.get("documents", [])]

        with self._lock:
            for document in incoming:
                if document.category_id is not None and document.category_id not in self._categories:
                    raise InvalidCategory(document.category_id)

            loaded = 0
            for document in incoming:
                if document.document_id in self._documents:
                    continue
                self._documents[document.document_id] = document
                if document.category_id is not None:
                    self._categories[document.category_id].document_ids.append(document.document_id)
                loaded += 1

        logger.info("Loaded %d knowledge documents", loaded)
        return loaded

    # =========================================================================
    # SAMPLE CONTENT
    # =========================================================================

    def load_sample_documents(self) -> List[Document]:
        """Load the starter corpus shipped with the app."""
        samples = [
            (
                "Brain Development in the Early Years",
                "In the first years of life, more than one million new neural connections "
                "are formed every second. Early brain development lays the foundation for "
                "all future learning, health and behavior. Experiences in the early years "
                "shape the architecture of the developing brain.",
                "Center on the Developing Child - Harvard",
                "child_dev",
            ),
            (
                "Serve and Return: Responsive Interactions",
                "Serve and return interactions between children and adults are fundamental "
                "for brain development. When a baby or young child babbles, gestures or "
                "cries, and an adult responds appropriately with eye contact, words or a "
                "hug, neural connections are built and strengthened in the child's brain.",
                "Center on the Developing Child - Harvard",
                "child_dev",
            ),
            (
                "Toxic Stress and Child Development",
                "Toxic stress disrupts the development of neural connections, especially in "
                "the brain areas dedicated to learning and reasoning. Prolonged activation "
                "of stress response systems can disrupt brain architecture and other organ "
                "systems, increasing the risk of stress-related disease and cognitive impairment.",
                "Center on the Developing Child - Harvard",
                "child_dev",
            ),
            (
                "Principles of Positive Discipline",
                "Positive discipline is based on mutual respect and collaboration. It teaches "
                "social and life skills in an encouraging, non-punitive way. Its principles "
                "include being kind and firm at the same time, connecting before correcting, "
                "focusing on solutions instead of punishment, and treating mistakes as "
                "opportunities to learn.",
                "MundoemCores.com",
                "positive_education",
            ),
            (
                "Nonviolent Communication with Children",
                "Nonviolent communication (NVC) with children means observing without "
                "judging, expressing feelings, identifying needs and making clear requests. "
                "By practicing NVC, parents create an environment of mutual understanding "
                "and respect, reducing conflict and strengthening the bond with their children.",
                "MundoemCores.com",
                "nonviolent_communication",
            ),
            (
                "How do I access the courses in the app?",
                "To access the courses in the MundoemCores.com app, log in with your "
                "credentials and open the Courses section. You can filter by category or use "
                "the search bar to find specific topics. Courses marked as Free can be "
                "watched without a subscription; the others require an active plan.",
                "MundoemCores.com FAQ",
                "app_faq",
            ),
            (
                "How does the freemium model work?",
                "In the MundoemCores.com freemium model you can sign up for free and access "
                "selected content plus the first lesson of every course. Full access requires "
                "a subscription purchased through the Hotmart platform, available as monthly "
                "or yearly plans.",
                "MundoemCores.com FAQ",
                "app_faq",
            ),
        ]

        return [
            self.add_document(title=title, content=content, source=source, category_id=category_id)
            for title, content, source, category_id in samples
        ]
