"""didanchor.batching

Batches, the files they are packed into, and where those files live.
"""

from didanchor.batching.batch import AnchoredBatch, decode_batch, encode_batch, parse_anchor_string
from didanchor.batching.cas import FileCas, HttpCas, MemoryCas, cas_from_config

__all__ = [
    "AnchoredBatch",
    "FileCas",
    "HttpCas",
    "MemoryCas",
    "cas_from_config",
    "decode_batch",
    "encode_batch",
    "parse_anchor_string",
]
