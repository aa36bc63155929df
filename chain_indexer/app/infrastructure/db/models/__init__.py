from chain_indexer.app.infrastructure.db.models.chain_data import (
    BlockDB,
    EventDB,
    TokenTransferDB,
    TransactionDB,
)
from chain_indexer.app.infrastructure.db.models.indexers import (
    IndexerConfigDB,
    IndexerDB,
    IndexerJobDB,
)

__all__ = [
    "BlockDB",
    "EventDB",
    "IndexerConfigDB",
    "IndexerDB",
    "IndexerJobDB",
    "TokenTransferDB",
    "TransactionDB",
]
