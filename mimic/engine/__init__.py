"""Engine — the reconciliation pipeline.

Data flows one way per invocation:
- diff: resolved config + probes -> ordered, exhaustive change list
- apply: change list -> filesystem/package mutations + one state save
- undo: persisted state record -> reversal + cleared record
- status: persisted state record -> drift report
"""
