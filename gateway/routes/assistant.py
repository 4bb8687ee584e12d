"""
Assistant Routes

In-app chat and knowledge base endpoints used by the Cora widget.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from cora import CoraService, Document

from ..dependencies import get_cora

router = APIRouter(prefix="/assistant")


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class StartConversationRequest(BaseModel):
    """Start conversation request."""
    user_id: Optional[str] = Field(default=None, max_length=256)


class StartConversationResponse(BaseModel):
    """Start conversation response."""
    conversation_id: str
    message_count: int


class ChatRequest(BaseModel):
    """Chat message request."""
    conversation_id: str
    message: str = Field(..., max_length=4096)


class ChatResponse(BaseModel):
    """Chat message response."""
    conversation_id: str
    response: str


class MessageInfo(BaseModel):
    """A message in a conversation."""
    role: str
    content: str
    timestamp: str
    message_id: str


class DocumentRequest(BaseModel):
    """Add document request."""
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    source: str = ""
    category_id: Optional[str] = None


class DocumentInfo(BaseModel):
    """Knowledge document."""
    document_id: str
    title: str
    content: str
    source: str
    category_id: Optional[str]
    date_added: str
    processed: bool


class KnowledgeSearchResponse(BaseModel):
    """Knowledge search response."""
    query: str
    category_id: Optional[str]
    results: List[DocumentInfo]
    total_found: int


def _document_info(document: Document) -> DocumentInfo:
    return DocumentInfo(**document.to_dict())


# =============================================================================
# CONVERSATION ROUTES
# =============================================================================

@router.post("/conversation", response_model=StartConversationResponse)
async def start_conversation(
    request: StartConversationRequest,
    cora: CoraService = Depends(get_cora),
):
    """Start a conversation, or resume the one belonging to user_id."""
    conversation_id = cora.start_conversation(request.user_id)
    return StartConversationResponse(
        conversation_id=conversation_id,
        message_count=len(cora.get_messages(conversation_id)),
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, cora: CoraService = Depends(get_cora)):
    """
    Send a message to Cora.

    Always answers with either the generated reply or the fallback text.
    """
    reply = await cora.send_user_message(request.conversation_id, request.message)
    return ChatResponse(conversation_id=request.conversation_id, response=reply)


@router.get("/conversation/{conversation_id}/messages")
async def get_conversation_messages(
    conversation_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    cora: CoraService = Depends(get_cora),
):
    """Get messages from a conversation, excluding the system prompt."""
    messages = cora.get_messages(conversation_id)[1:][-limit:]
    return {
        "conversation_id": conversation_id,
        "messages": [MessageInfo(**m.to_record()) for m in messages],
        "total": len(messages),
    }


@router.delete("/conversation/{conversation_id}")
async def clear_conversation(conversation_id: str, cora: CoraService = Depends(get_cora)):
    """Clear conversation history."""
    if not await cora.clear_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")

    return {
        "success": True,
        "conversation_id": conversation_id,
        "message": "Conversation cleared",
    }


# =============================================================================
# KNOWLEDGE ROUTES
# =============================================================================

@router.get("/knowledge/search", response_model=KnowledgeSearchResponse)
async def search_knowledge(
    query: str = Query(..., min_length=1),
    category_id: Optional[str] = None,
    cora: CoraService = Depends(get_cora),
):
    """Search the knowledge base."""
    results = cora.search_knowledge(query, category_id)
    return KnowledgeSearchResponse(
        query=query,
        category_id=category_id,
        results=[_document_info(d) for d in results],
        total_found=len(results),
    )


@router.post("/knowledge/documents", response_model=DocumentInfo)
async def add_document(request: DocumentRequest, cora: CoraService = Depends(get_cora)):
    """Add a document to the knowledge base."""
    document = cora.add_document(
        title=request.title,
        content=request.content,
        category_id=request.category_id,
        source=request.source,
    )
    return _document_info(document)


@router.post("/knowledge/process")
async def process_documents(cora: CoraService = Depends(get_cora)):
    """Process documents added since the last run."""
    batch = cora.process_documents()
    return {
        "processed": len(batch),
        "document_ids": [d.document_id for d in batch],
    }


@router.get("/knowledge/categories")
async def list_categories(cora: CoraService = Depends(get_cora)):
    """List knowledge categories."""
    return {"categories": cora.knowledge.list_categories()}


@router.get("/knowledge/stats")
async def knowledge_stats(cora: CoraService = Depends(get_cora)):
    """Get knowledge base statistics."""
    return cora.knowledge.get_stats()


@router.get("/status")
async def assistant_status(cora: CoraService = Depends(get_cora)):
    """Get assistant service status."""
    return {
        "status": "operational",
        **cora.get_stats(),
    }
