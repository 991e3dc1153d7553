"""
Structured edits (set value / formula, insert / delete rows and columns,
fill a formula over a range) and the row/column bookkeeping behind them.
"""
