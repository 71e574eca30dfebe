"""Question answering over ERP catalog records (products and materials).

Questions are reformulated, answered from a LanceDB-backed hybrid index,
filtered down to supporting evidence and answered by two competing
generation policies whose outputs are scored deterministically.
"""
