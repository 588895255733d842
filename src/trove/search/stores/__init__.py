"""VectorStore backends.

The remote backends import without their client libraries installed and
raise ``ImportError`` only when constructed.
"""

from trove.search.stores.local import LocalVectorStore
from trove.search.stores.pinecone import PineconeVectorStore
from trove.search.stores.qdrant import QdrantVectorStore

__all__ = ["LocalVectorStore", "PineconeVectorStore", "QdrantVectorStore"]
