"""End-to-end document indexing workflow.

Combines change detection, chunking, embedding, and storage.
"""

import hashlib
from collections.abc import Iterable

from loguru import logger

from docsearch.chunking import Chunk, ChunkingConfig, MarkdownChunker, estimate_tokens
from docsearch.context import SearchContext
from docsearch.exceptions import EmbeddingError
from docsearch.models import EmbeddedChunk, IndexingReport, SourceDocument


def compute_content_hash(content: str) -> str:
    """Return the hex SHA-256 digest of a document's raw content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def build_context_text(document_title: str, section_title: str, text: str) -> str:
    """Prefix chunk text with its document and section titles for embedding.

    Example:
        >>> build_context_text("Guide", "Install", "Run make.")
        'Guide - Install\\n\\nRun make.'
    """
    heading = f"{document_title} - {section_title}" if section_title else document_title
    return f"{heading}\n\n{text}"


class DocumentIndexer:
    """Indexes source documents into the vector store.

    Handles the complete workflow:
    1. Skip documents whose content hash is unchanged
    2. Chunk the markdown
    3. Embed every chunk (with title context) in one batch
    4. Store the document record and its chunk set atomically
    """

    def __init__(self, context: SearchContext, chunking_config: ChunkingConfig | None = None):
        """Initialize document indexer.

        Args:
            context: Store and embedding provider
            chunking_config: Configuration for text chunking (uses defaults if None)
        """
        self.context = context
        self.chunker = MarkdownChunker(chunking_config or ChunkingConfig())

    async def index_document(self, document: SourceDocument, force: bool = False) -> bool:
        """Index a single document unless it is already up to date.

        Nothing is written until every chunk is embedded, so a failed
        embedding leaves the previously indexed state untouched.

        Args:
            document: Document to index
            force: Re-index even if the content hash is unchanged

        Returns:
            True if the document was (re-)indexed, False if it was skipped

        Raises:
            EmbeddingError: If the provider fails or returns the wrong count
            VectorStoreError: If the store cannot be read or written
        """
        store = self.context.store
        path = document.relative_path
        content_hash = compute_content_hash(document.content)

        if not force and not store.needs_update(path, content_hash):
            logger.debug(f"Document {path} is up to date, skipping")
            return False

        logger.info(f"Indexing document: {path}")

        chunks = self.chunker.chunk(document.content)
        if not chunks:
            logger.info(f"No chunks generated for document {path}")

        embedded = await self._embed_chunks(document, chunks)
        store.save_document(path, document.title, content_hash, embedded)

        logger.info(f"Indexed {len(embedded)} chunks for document {path}")
        return True

    async def index_documents(
        self, documents: Iterable[SourceDocument], force: bool = False
    ) -> IndexingReport:
        """Index documents one at a time, continuing past failures.

        Args:
            documents: Documents to index
            force: Re-index even unchanged documents

        Returns:
            Report listing indexed, skipped and failed paths
        """
        report = IndexingReport()

        for document in documents:
            path = document.relative_path
            try:
                if await self.index_document(document, force=force):
                    report.indexed.append(path)
                else:
                    report.skipped.append(path)
            except Exception as e:
                logger.warning(f"Failed to index document {path}: {e}")
                report.failed[path] = str(e)

        logger.info(
            f"Indexing complete: {len(report.indexed)} indexed, "
            f"{len(report.skipped)} up to date, {len(report.failed)} failed"
        )
        return report

    def remove_document(self, path: str) -> bool:
        """Remove a document and all its chunks from the store.

        Returns:
            True if the document existed
        """
        return self.context.store.delete_document(path)

    async def _embed_chunks(
        self, document: SourceDocument, chunks: list[Chunk]
    ) -> list[EmbeddedChunk]:
        """Embed chunks with title context, preserving order."""
        if not chunks:
            return []

        texts = [
            build_context_text(document.title, chunk.section_title, chunk.text)
            for chunk in chunks
        ]
        logger.debug(
            f"Embedding {len(texts)} chunks (~{sum(map(estimate_tokens, texts))} tokens) "
            f"for {document.relative_path}"
        )

        vectors = await self.context.provider.embed_batch(texts)
        if len(vectors) != len(chunks):
            raise EmbeddingError(
                f"Expected {len(chunks)} embeddings, got {len(vectors)}",
                context=document.relative_path,
            )

        return [
            EmbeddedChunk(
                chunk_index=chunk.index,
                text=chunk.text,
                section_title=chunk.section_title,
                start_offset=chunk.start_offset,
                end_offset=chunk.end_offset,
                embedding=vector,
            )
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]
